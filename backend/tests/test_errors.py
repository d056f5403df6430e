"""Error categories written to job and sync records."""
import pytest
from sqlalchemy.exc import OperationalError, ProgrammingError

from mailledger.errors import (
    StoreConfigurationError,
    describe_error,
    error_category,
    store_query,
)


def test_missing_table_is_store_configuration():
    exc = OperationalError("SELECT", {}, Exception("no such table: messages"))
    assert error_category(exc) == "store_configuration"
    assert describe_error(exc) == "Store configuration required: (builtins.Exception) no such table: messages"


def test_non_database_errors_are_unexpected_even_with_matching_text():
    exc = RuntimeError("Error code: 404 - The model `gpt-5.2` does not exist or you do not have access to it.")
    assert error_category(exc) == "unexpected"
    assert describe_error(exc).startswith("Error code: 404")


def test_store_query_translates_configuration_errors():
    with pytest.raises(StoreConfigurationError) as info:
        with store_query():
            raise ProgrammingError("SELECT", {}, Exception('relation "transactions" does not exist'))
    assert error_category(info.value) == "store_configuration"
    assert describe_error(info.value) == (
        'Store configuration required: (builtins.Exception) relation "transactions" does not exist'
    )


def test_store_query_passes_other_errors_through():
    with pytest.raises(OperationalError):
        with store_query():
            raise OperationalError("SELECT", {}, Exception("database is locked"))
