"""Test that the project setup is working correctly."""

import bondly_api


def test_version() -> None:
    """Test that version is defined."""
    assert bondly_api.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from bondly_api import airdrop
    from bondly_api import api
    from bondly_api import auth
    from bondly_api import chain
    from bondly_api import mailer
    from bondly_api import storage
    from bondly_api import wallet

    # Just verify imports work
    assert airdrop is not None
    assert api is not None
    assert auth is not None
    assert chain is not None
    assert mailer is not None
    assert storage is not None
    assert wallet is not None
