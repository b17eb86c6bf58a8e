from __future__ import annotations

from disclosure_workers.jobs.check_db import check_db
from disclosure_workers.jobs.diff_fragment import diff_fragment
from disclosure_workers.jobs.executor import HandlerRegistry
from disclosure_workers.jobs.extract_fragment import extract_fragment
from disclosure_workers.jobs.guess_wikidata import guess_wikidata
from disclosure_workers.jobs.save_to_api import save_to_api
from disclosure_workers.schemas.payloads import JOB_KINDS


def build_registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.run("guess_wikidata", guess_wikidata)
    registry.run("check_db", check_db)
    registry.run("extract_fragment", extract_fragment)
    registry.run("diff_fragment", diff_fragment)
    registry.run("save_to_api", save_to_api)

    missing = set(JOB_KINDS) - registry.kinds
    if missing:
        raise RuntimeError(f"no handler registered for job kinds: {sorted(missing)}")
    return registry
