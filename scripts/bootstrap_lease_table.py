#!/usr/bin/env python3
"""Emit SQL that creates the crawl lease table, optionally force-releasing a lease."""

from __future__ import annotations

import argparse

from parallel_crawler.services.lock_backend import LEASE_TABLE_DDL


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, release: str | None = None) -> str:
    sql = "-- parallel-crawler lease table bootstrap SQL\n\n" + LEASE_TABLE_DDL
    if release:
        sql += (
            "\n-- Force-release a stuck lease; the holder notices on its next refresh.\n"
            f"delete from crawl_leases where name = {_quote_sql(release)};\n"
        )
    return sql


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL for the parallel-crawler lease table.")
    parser.add_argument(
        "--release",
        metavar="LEASE_NAME",
        help="Also emit a statement deleting the named lease",
    )
    args = parser.parse_args()
    print(render_sql(release=args.release))


if __name__ == "__main__":
    main()
