"""Glossary-consistent batch translation for long-form novels."""

__version__ = "0.1.0"
