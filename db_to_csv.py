#!/usr/bin/env python3
"""
Database to CSV Export Script

Exports the monitor's tables to CSV files in data/csvs/
"""

import csv
import sys
from pathlib import Path

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError

from config.settings import Settings
from config.database import create_db_engine
from config.models import Base


def export_table_to_csv(connection, table, output_dir):
    """
    Export a single table to CSV.

    Returns:
        int: Number of rows written (0 for an empty table, which is skipped)
    """
    result = connection.execute(select(table))
    rows = result.fetchall()
    if not rows:
        print(f"Table '{table.name}' is empty")
        return 0

    csv_path = output_dir / f"{table.name}.csv"
    with open(csv_path, 'w', newline='', encoding='utf-8') as csvfile:
        writer = csv.writer(csvfile)
        writer.writerow(result.keys())
        for row in rows:
            writer.writerow(row)

    print(f"Exported {len(rows)} rows from '{table.name}' to {csv_path.name}")
    return len(rows)


def export_all(database_url, output_dir):
    engine = create_db_engine(database_url)
    existing = set(inspect(engine).get_table_names())
    tables = [table for table in Base.metadata.sorted_tables if table.name in existing]

    exported = 0
    with engine.connect() as connection:
        for table in tables:
            if export_table_to_csv(connection, table, output_dir):
                exported += 1
    engine.dispose()
    return exported, len(tables)


def main():
    """Export all monitor tables to CSV."""
    print("Database to CSV Export Tool")
    print("=" * 40)

    output_dir = Path(__file__).parent / "data" / "csvs"
    output_dir.mkdir(parents=True, exist_ok=True)
    print(f"Output directory: {output_dir}")

    settings = Settings.from_env()
    try:
        exported, total = export_all(settings.database_url, output_dir)
    except SQLAlchemyError as e:
        print(f"Error during export: {e}")
        return 1

    if not total:
        print("No tables found in database")
        return 1

    print("\n" + "=" * 40)
    print(f"Successfully exported {exported}/{total} tables")
    return 0


if __name__ == "__main__":
    sys.exit(main())
