#!/usr/bin/python3
import os
import sys


def main(distinct_id: str = "", project_id: str = "") -> int:
    """Look up a single user profile and print its properties.

    Kept as a tiny example entrypoint so other scripts (and tests) can reuse it
    without triggering network calls at import time.
    """

    # Easiest to import mp.py if it is in the same directory as this script.
    import mp

    distinct_id = distinct_id or (sys.argv[1] if len(sys.argv) > 1 else "")
    if not distinct_id:
        sys.stderr.write("usage: find_profile.py DISTINCT_ID\n")
        return 2

    # The same fetch works for arbitrary filters, e.g.
    # mp.fetch_all(client, {"project_id": ..., "where": 'user["$email"]=="a@b.c"'}, 1000)
    try:
        client = mp.Client(
            os.getenv("MP_SERVICE_ACCOUNT", ""),
            os.getenv("MP_SERVICE_SECRET", ""),
            os.getenv("MP_REGION", "") or mp.REGION_US,
            project_id or os.getenv("MP_PROJECT_ID", ""),
        )
        result = mp.fetch_all(
            client,
            {"project_id": client.project_id, "distinct_id": distinct_id},
            page_size=1000,
            result_cap=1,
        )
    except mp.MPError as e:
        sys.stderr.write(f"Error: {e}\n")
        return 1

    if not result.records:
        sys.stderr.write(f"no profile found for {distinct_id!r}\n")
        return 1

    props = result.records[0].get("$properties") or {}
    for key in sorted(props):
        print(f"{key}: {props[key]}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
