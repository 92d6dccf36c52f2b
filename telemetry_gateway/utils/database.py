from supabase import AsyncClient
from .logger import logger


async def query_data(
    supabase: AsyncClient,
    table_name: str,
    filters: dict = None,
    select_fields: str = "*",
):
    """
    Query a Supabase table with dynamic filters.

    :param table_name: Name of the table to query.
    :param filters: Dictionary where keys are column names and values are filter conditions.
                     A plain value means equality; ``("is", "null")`` matches NULL columns.
    :param select_fields: Fields to select (default is "*").
    :return: Query result from Supabase.
    """
    query = supabase.table(table_name).select(select_fields)

    for key, condition in (filters or {}).items():
        if isinstance(condition, tuple) and condition[0] == "is":
            query = query.is_(key, condition[1])
        else:
            query = query.eq(key, condition)

    return await query.execute()


async def update_data(
    supabase: AsyncClient,
    table_name: str,
    update_values: dict,
    filters: dict,
):
    """Update rows in ``table_name`` matching ``filters`` (equality only)."""
    try:
        query = supabase.table(table_name).update(update_values)
        for key, value in filters.items():
            query = query.eq(key, value)
        return await query.execute()
    except Exception as e:
        logger.error(f"Error updating {table_name}: {e}")
        raise e
