"""salestrack_etl.dedupe_index

Per-batch lookup of existing jobs by external id and by dedupe key.

Built once from the store at the start of a batch and extended as the
batch creates or re-keys jobs, so a project that appears twice in one file
is created once and merged on its second appearance.  Discarded when the
batch ends.
"""

from __future__ import annotations

import logging
from typing import Iterable

from salestrack_etl.models import Job

log = logging.getLogger(__name__)


class DedupeIndex:
    def __init__(self) -> None:
        self.by_external_id: dict[str, Job] = {}
        self.by_dedupe_key: dict[str, Job] = {}

    @classmethod
    def build(cls, jobs: Iterable[Job]) -> "DedupeIndex":
        """Index existing jobs.  On duplicate keys the first job seen wins."""
        index = cls()
        for job in jobs:
            if job.external_id:
                index.by_external_id.setdefault(job.external_id, job)
            if job.dedupe_key:
                index.by_dedupe_key.setdefault(job.dedupe_key, job)
        log.debug(
            "dedupe index built: %d by external_id, %d by dedupe_key",
            len(index.by_external_id), len(index.by_dedupe_key),
        )
        return index

    def match(self, external_id: str | None, dedupe_key: str | None) -> Job | None:
        """External id first; the dedupe key only when the id finds nothing."""
        if external_id:
            job = self.by_external_id.get(external_id)
            if job is not None:
                return job
        if dedupe_key:
            return self.by_dedupe_key.get(dedupe_key)
        return None

    def add(self, job: Job) -> None:
        """Register a created or re-keyed job so later rows in the batch see it."""
        if job.external_id:
            self.by_external_id[job.external_id] = job
        if job.dedupe_key:
            self.by_dedupe_key[job.dedupe_key] = job

    def __len__(self) -> int:
        return len({id(j) for j in (*self.by_external_id.values(), *self.by_dedupe_key.values())})
