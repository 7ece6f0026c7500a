"""Tests for GlossaryService."""

import pytest

from novel_translator.models import Term, TermCategory
from novel_translator.services.glossary_service import GlossaryService
from novel_translator.storage import RecordNotFoundError


@pytest.fixture
def service(store, project):
    return GlossaryService(store)


def test_add_term_manual_is_unlocked(service, project):
    term = service.add_term(project.id, "  灵气 ", "energy", "Martial Art/Skill")
    assert term.id is not None
    assert term.original == "灵气"
    assert term.category == TermCategory.SKILL
    assert term.is_locked is False


def test_add_from_selection_is_locked(service, project):
    term = service.add_from_selection(project.id, "Jade Hall", "Hall of Jade", "Location")
    assert term.is_locked is True


def test_add_duplicate_rejected(service, project):
    service.add_term(project.id, "Azure Sect", "Qingyun")
    with pytest.raises(ValueError):
        service.add_term(project.id, "azure sect", "other")


def test_add_blank_rejected(service, project):
    with pytest.raises(ValueError):
        service.add_term(project.id, "   ", "x")


def test_unknown_project(store):
    with pytest.raises(RecordNotFoundError):
        GlossaryService(store).list_terms("ghost")


def test_update_and_toggle_lock(service, project):
    term = service.add_term(project.id, "A", "a")
    assert service.update_term(project.id, term.id, translation="b").translation == "b"
    assert service.toggle_lock(project.id, term.id).is_locked is True
    assert service.toggle_lock(project.id, term.id).is_locked is False
    assert service.set_locked(project.id, term.id, True).is_locked is True


def test_term_of_other_project_rejected(service, store, project):
    store.create_project("other")
    foreign = store.insert_term(Term(project_id="other", original="x"))
    with pytest.raises(ValueError):
        service.remove_term(project.id, foreign)


def test_remove_term(service, project):
    term = service.add_term(project.id, "A", "a")
    service.remove_term(project.id, term.id)
    assert service.list_terms(project.id) == []


def test_get_glossary_with_search(service, project):
    service.add_term(project.id, "灵气", "energy")
    service.add_from_selection(project.id, "Jade Hall", "Hall of Jade")
    result = service.get_glossary(project.id, "hall")
    assert result["total"] == 1
    assert result["locked"] == 1
    assert "Skill" in result["categories"]


def test_find_term(service, project):
    service.add_term(project.id, "Azure Sect", "Qingyun")
    assert service.find_term(project.id, "AZURE SECT").translation == "Qingyun"
    assert service.find_term(project.id, "missing") is None


def test_import_csv_inserts_and_updates(service, project):
    service.add_term(project.id, "A", "old")
    csv_text = (
        "original,translation,category,is_locked\n"
        "A,new,Person,false\n"
        "B,b,Item,\n"
        ",ignored,Other,true\n"
    )

    counts = service.import_csv(project.id, csv_text)

    assert counts == {"imported": 1, "updated": 1}
    terms = {t.original: t for t in service.list_terms(project.id)}
    assert terms["A"].translation == "new"
    assert terms["A"].category == TermCategory.PERSON
    assert terms["B"].is_locked is True


def test_export_csv(service, project):
    service.add_term(project.id, "灵气", "energy", "Skill")
    lines = service.export_csv(project.id).splitlines()
    assert lines[0] == "original,translation,category,is_locked"
    assert lines[1] == "灵气,energy,Skill,false"
