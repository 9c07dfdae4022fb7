import pkgutil

SCHEMA_RESOURCE = "offer_logs.sql"


def read_resource(relative_path: str) -> str:
    """
    Reads in a file resource as a string, for some file distributed with this package, without requiring users to
    manage paths and data locations (e.g. for the ledger's SQL schema)

    :param relative_path: relative path within the package of the file, e.g. "offer_logs.sql"
    :return: string file content
    """
    return pkgutil.get_data(__package__, relative_path).decode("utf-8")  # type: ignore


def ledger_schema() -> str:
    """SQL that creates the offer ledger table in a Supabase project."""
    return read_resource(SCHEMA_RESOURCE)
