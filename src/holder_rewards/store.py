"""
File-backed persistence.

holders.json            full snapshot, replaced atomically on every sync
memberships.json        address -> paid membership, maintained elsewhere
exclusions.jsonl        append-only exclusion log
draws.jsonl             append-only DrawResult log
distributions.jsonl     append-only Distribution log
audits/<ts>.json        one audit document per draw
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime
from typing import Any, Dict, Iterator, List

from .models import Distribution, DrawResult, ExclusionRecord, HolderRecord, Membership


class JsonStore:
    def __init__(self, directory: str) -> None:
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, name: str) -> str:
        return os.path.join(self.directory, name)

    def _write_atomic(self, name: str, payload: Any) -> str:
        path = self._path(name)
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return path

    def _append(self, name: str, row: Dict[str, Any]) -> None:
        with open(self._path(name), "a", encoding="utf-8") as f:
            f.write(json.dumps(row) + "\n")

    def _read_lines(self, name: str) -> Iterator[Dict[str, Any]]:
        path = self._path(name)
        if not os.path.exists(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    # Holders

    def replace_holders(self, records: List[HolderRecord]) -> None:
        self._write_atomic("holders.json", [r.to_dict() for r in records])

    def load_holders(self) -> List[HolderRecord]:
        path = self._path("holders.json")
        if not os.path.exists(path):
            return []
        with open(path, "r", encoding="utf-8") as f:
            return [HolderRecord.from_dict(d) for d in json.load(f)]

    # Memberships

    def load_memberships(self) -> Dict[str, Membership]:
        path = self._path("memberships.json")
        if not os.path.exists(path):
            return {}
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        out: Dict[str, Membership] = {}
        for addr, m in raw.items():
            expires = m.get("expires_at")
            out[addr] = Membership(
                vip_tier=m.get("vip_tier", "None"),
                multiplier=int(m.get("multiplier", 1)),
                baseline_entries=int(m.get("baseline_entries", 0)),
                expires_at=datetime.fromisoformat(expires) if expires else None,
            )
        return out

    # Exclusions

    def append_exclusion(self, record: ExclusionRecord) -> None:
        self._append("exclusions.jsonl", record.to_dict())

    def load_exclusions(self) -> List[ExclusionRecord]:
        return [ExclusionRecord.from_dict(d) for d in self._read_lines("exclusions.jsonl")]

    # Draws and distributions

    def append_draw(self, result: DrawResult) -> None:
        self._append("draws.jsonl", result.to_dict())

    def load_draws(self) -> List[Dict[str, Any]]:
        return list(self._read_lines("draws.jsonl"))

    def write_audit(self, result: DrawResult, audit: Dict[str, Any]) -> str:
        os.makedirs(self._path("audits"), exist_ok=True)
        stamp = result.timestamp.strftime("%Y%m%dT%H%M%S%fZ")
        return self._write_atomic(os.path.join("audits", f"draw-{stamp}.json"), audit)

    def append_distribution(self, dist: Distribution) -> None:
        self._append("distributions.jsonl", dist.to_dict())

    def load_distributions(self) -> List[Dict[str, Any]]:
        return list(self._read_lines("distributions.jsonl"))
