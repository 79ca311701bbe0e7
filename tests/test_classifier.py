from specflow.classifier import RequestClassifier, build_request, classify, extract_keywords
from specflow.config import ClassifierConfig, SpecflowConfig
from specflow.models import ProjectStateSnapshot, Request, RequestCategory

WITH_DOCS = ProjectStateSnapshot(has_prior_docs=True, prior_iteration_ids=("iter-1",))
NO_DOCS = ProjectStateSnapshot(has_prior_docs=False)


def test_empty_request_without_docs_is_new_project() -> None:
    assert classify(Request(raw_text=""), NO_DOCS) is RequestCategory.NEW_PROJECT


def test_empty_request_with_docs_defaults_to_enhancement() -> None:
    assert classify(Request(raw_text=""), WITH_DOCS) is RequestCategory.ENHANCEMENT
    assert classify(build_request(None), WITH_DOCS) is RequestCategory.ENHANCEMENT


def test_missing_docs_forces_new_project() -> None:
    request = build_request("Fix the broken login error")

    assert classify(request, NO_DOCS) is RequestCategory.NEW_PROJECT


def test_bug_fix_request_with_docs() -> None:
    request = build_request("Fix the login bug")

    assert {"fix", "bug"} <= request.detected_keywords
    assert classify(request, WITH_DOCS) is RequestCategory.BUG_FIX


def test_bug_fix_outranks_refactor_and_enhancement() -> None:
    request = build_request("Refactor the parser and add support for the crash report")

    assert classify(request, WITH_DOCS) is RequestCategory.BUG_FIX


def test_refactor_without_functional_change() -> None:
    request = build_request("Optimize and restructure the billing module")

    assert classify(request, WITH_DOCS) is RequestCategory.REFACTOR


def test_refactor_with_functional_change_is_enhancement() -> None:
    request = build_request("Refactor the billing module and add invoice export")

    assert classify(request, WITH_DOCS) is RequestCategory.ENHANCEMENT


def test_new_project_vocabulary_with_docs() -> None:
    request = build_request("Create a new system for inventory")

    assert classify(request, WITH_DOCS) is RequestCategory.NEW_PROJECT


def test_unmatched_request_with_docs_is_enhancement() -> None:
    request = build_request("Dark mode for the dashboard")

    assert request.detected_keywords == frozenset()
    assert classify(request, WITH_DOCS) is RequestCategory.ENHANCEMENT


def test_known_issue_reference_counts_as_bug_fix() -> None:
    snapshot = ProjectStateSnapshot(has_prior_docs=True, known_issues={"AUTH-12"})
    request = build_request("Please look at auth-12 again")

    assert classify(request, snapshot) is RequestCategory.BUG_FIX
    assert classify(request, WITH_DOCS) is RequestCategory.ENHANCEMENT


def test_classification_is_deterministic() -> None:
    samples = [
        "",
        "Fix the login bug",
        "Optimize the query layer",
        "Add a reporting schema",
        "Create a new inventory system",
    ]
    for text in samples:
        for snapshot in (WITH_DOCS, NO_DOCS):
            request = build_request(text)
            assert classify(request, snapshot) is classify(request, snapshot)
            assert build_request(text) == request


def test_keywords_match_whole_words_and_phrases() -> None:
    keywords = extract_keywords(
        "Prefix handling in the New   System",
        {"terms": ["fix", "new system"]},
    )

    assert keywords == frozenset({"new system"})


def test_integration_terms_are_detected() -> None:
    request = build_request("Add a reporting schema to the database")

    assert {"schema", "database", "add"} <= request.detected_keywords


def test_classifier_uses_configured_vocabulary() -> None:
    config = SpecflowConfig.default()
    config.classifier = ClassifierConfig(bug_fix_terms=["hotfix"])
    classifier = RequestClassifier.from_config(config)

    assert classifier.classify(classifier.build_request("hotfix checkout"), WITH_DOCS) is (
        RequestCategory.BUG_FIX
    )
    assert classifier.classify(classifier.build_request("fix checkout"), WITH_DOCS) is (
        RequestCategory.ENHANCEMENT
    )
