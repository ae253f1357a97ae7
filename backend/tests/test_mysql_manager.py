import pytest

from hostpanel.core.exceptions import InvalidInput, NotConfigured
from hostpanel.system.mysql_manager import (
    PRIVILEGE_SETS,
    MySQLManager,
    Privilege,
    quote_identifier,
    sanitize_identifier,
    validate_host,
    validate_identifier,
    validate_user,
)


@pytest.mark.parametrize("value", ["shop", "shop_2024", "A1_b2"])
def test_valid_identifiers(value):
    assert validate_identifier(value) == value


@pytest.mark.parametrize("value", ["", "shop-db", "shop;DROP", "db`x", "über", "a b"])
def test_identifiers_that_change_under_sanitizing_are_rejected(value):
    with pytest.raises(InvalidInput):
        validate_identifier(value)


def test_sanitized_identifier_alphabet():
    cleaned = sanitize_identifier("we!rd-näme`;--_ok9")
    assert cleaned == "werdnme_ok9"
    assert set(cleaned) <= set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_")


def test_length_limits():
    validate_identifier("d" * 64)
    with pytest.raises(InvalidInput):
        validate_identifier("d" * 65)
    validate_user("u" * 32)
    with pytest.raises(InvalidInput):
        validate_user("u" * 33)


def test_quote_identifier():
    assert quote_identifier("shop") == "`shop`"
    with pytest.raises(InvalidInput):
        quote_identifier("shop`; DROP DATABASE x; --")


def test_validate_host():
    assert validate_host("") == "localhost"
    assert validate_host("10.0.0.%") == "10.0.0.%"
    with pytest.raises(InvalidInput):
        validate_host("evil' OR 1")


def test_privilege_sets():
    assert PRIVILEGE_SETS[Privilege.READ_ONLY] == "SELECT"
    assert PRIVILEGE_SETS[Privilege.READ_WRITE] == "SELECT, INSERT, UPDATE, DELETE"
    assert PRIVILEGE_SETS[Privilege.ALL] == "ALL PRIVILEGES"


def test_manager_needs_root_password():
    with pytest.raises(NotConfigured):
        MySQLManager("")
