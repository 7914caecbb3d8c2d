"""Test that the project setup is working correctly."""

import stacks_lakehouse


def test_version() -> None:
    """Test that version is defined."""
    assert stacks_lakehouse.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from stacks_lakehouse import classifier
    from stacks_lakehouse import discovery
    from stacks_lakehouse import enrichment
    from stacks_lakehouse import marts
    from stacks_lakehouse import staging
    from stacks_lakehouse import storage

    # Just verify imports work
    assert classifier is not None
    assert discovery is not None
    assert enrichment is not None
    assert marts is not None
    assert staging is not None
    assert storage is not None
