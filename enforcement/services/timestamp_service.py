"""
Blockchain Timestamp Service

Anchors evidence hashes to the Bitcoin blockchain through OpenTimestamps:
- Stamping a hash against the public calendar servers
- Upgrading pending proofs once a calendar has a Bitcoin attestation
- Verifying the attested block time through a block explorer
- Periodic upgrade of pending evidence snapshot proofs

Whether the notary library is usable is decided once, when the service is
constructed. Without it every operation on a pending proof returns a
``failed`` proof. No operation raises.
"""

import asyncio
import base64
import importlib
import logging
import os
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from enforcement.config import get_settings
from enforcement.models.database import EvidenceSnapshot
from enforcement.models.records import CustodyEntry, TimestampProof

logger = logging.getLogger(__name__)

OTS_INFO_URL = "https://opentimestamps.org/info/?"


def _now() -> str:
    return datetime.utcnow().isoformat()


class TimestampService:
    """OpenTimestamps notary with capability detection."""

    def __init__(
        self,
        calendar_urls: list[str] | None = None,
        timeout: int | None = None,
        explorer_url: str | None = None,
        notary_module: str = "opentimestamps",
    ):
        settings = get_settings()
        self.calendar_urls = calendar_urls or settings.ots_calendar_urls
        self.timeout = timeout or settings.ots_timeout_seconds
        self.explorer_url = (explorer_url or settings.bitcoin_explorer_url).rstrip("/")
        self.upgrade_delay = timedelta(minutes=settings.ots_upgrade_delay_minutes)

        self._ots = self._load_notary(notary_module)
        self.available = self._ots is not None

    @staticmethod
    def _load_notary(package: str) -> dict | None:
        """Resolve the notary modules, or None if they cannot be imported."""
        try:
            return {
                "timestamp": importlib.import_module(f"{package}.core.timestamp"),
                "op": importlib.import_module(f"{package}.core.op"),
                "notary": importlib.import_module(f"{package}.core.notary"),
                "serialize": importlib.import_module(f"{package}.core.serialize"),
                "calendar": importlib.import_module(f"{package}.calendar"),
            }
        except Exception as e:
            logger.warning(f"OpenTimestamps unavailable, timestamping disabled: {e}")
            return None

    # ==================== Public API ====================

    async def create_timestamp(self, content_hash: str) -> TimestampProof:
        """Submit a SHA-256 hex digest to the calendar servers.

        Returns a ``pending`` proof on success, a ``failed`` proof otherwise.
        """
        if not self.available:
            return TimestampProof(
                hash=content_hash, created_at=_now(), status="failed",
                error="OpenTimestamps unavailable",
            )

        try:
            ots_bytes = await asyncio.to_thread(self._stamp_sync, bytes.fromhex(content_hash))
        except Exception as e:
            logger.error(f"Error creating timestamp for {content_hash}: {e}")
            return TimestampProof(hash=content_hash, created_at=_now(), status="failed", error=str(e))

        logger.info(f"Timestamp created for {content_hash}, pending Bitcoin confirmation")
        return TimestampProof(
            hash=content_hash,
            ots_file=base64.b64encode(ots_bytes).decode(),
            created_at=_now(),
            status="pending",
            verification_url=OTS_INFO_URL + ots_bytes.hex(),
        )

    async def verify_timestamp(self, proof: TimestampProof) -> TimestampProof:
        """Check whether a pending proof is anchored in a Bitcoin block.

        Returns ``confirmed`` with the block time only when the explorer
        reports a positive block timestamp; otherwise the proof stays
        ``pending``. An unreadable proof becomes ``failed``.
        """
        if proof.status != "pending":
            return proof
        if not self.available:
            return proof.model_copy(update={"status": "failed", "error": "OpenTimestamps unavailable"})

        try:
            attestations = self._bitcoin_attestations(base64.b64decode(proof.ots_file or ""))
        except Exception as e:
            logger.error(f"Unreadable timestamp proof for {proof.hash}: {e}")
            return proof.model_copy(update={"status": "failed", "error": str(e)})

        confirmed = None
        for height, merkle_root in attestations:
            block_time = await self._block_time(height, merkle_root)
            if block_time and block_time > 0 and (confirmed is None or block_time < confirmed[1]):
                confirmed = (height, block_time)

        if confirmed is None:
            return proof

        height, block_time = confirmed
        logger.info(f"Timestamp for {proof.hash} confirmed in block {height}")
        return proof.model_copy(update={
            "status": "confirmed",
            "bitcoin_block": height,
            "confirmation_date": datetime.utcfromtimestamp(block_time).isoformat(),
        })

    async def upgrade_timestamp(self, proof: TimestampProof) -> TimestampProof:
        """Fetch calendar attestations for a pending proof.

        No-op for proofs that are not pending. On a successful upgrade the
        proof is re-serialized and verified.
        """
        if proof.status != "pending":
            return proof
        if not self.available:
            return proof.model_copy(update={"status": "failed", "error": "OpenTimestamps unavailable"})

        try:
            ots_bytes, changed = await asyncio.to_thread(
                self._upgrade_sync, base64.b64decode(proof.ots_file or "")
            )
        except Exception as e:
            logger.error(f"Error upgrading timestamp for {proof.hash}: {e}")
            return proof

        if not changed:
            logger.debug(f"Timestamp for {proof.hash} still pending")
            return proof

        upgraded = proof.model_copy(update={
            "ots_file": base64.b64encode(ots_bytes).decode(),
            "verification_url": OTS_INFO_URL + ots_bytes.hex(),
        })
        return await self.verify_timestamp(upgraded)

    async def upgrade_pending_snapshots(self, session: AsyncSession) -> dict:
        """Upgrade every pending snapshot proof older than the upgrade delay.

        Only the ``timestamp_proof`` column is replaced; the change is
        appended to the snapshot's chain of custody.
        """
        stats = {"checked": 0, "confirmed": 0, "still_pending": 0, "failed": 0}
        if not self.available:
            logger.warning("Skipping timestamp upgrade, OpenTimestamps unavailable")
            return stats

        cutoff = datetime.utcnow() - self.upgrade_delay
        result = await session.execute(
            select(EvidenceSnapshot).where(
                EvidenceSnapshot.timestamp_proof["status"].as_string() == "pending",
                EvidenceSnapshot.created_at <= cutoff,
            )
        )
        snapshots = result.scalars().all()

        for snapshot in snapshots:
            stats["checked"] += 1
            proof = TimestampProof.model_validate(snapshot.timestamp_proof)
            upgraded = await self.upgrade_timestamp(proof)

            if upgraded.status == "pending":
                stats["still_pending"] += 1
                if upgraded.ots_file == proof.ots_file:
                    continue
            else:
                stats[upgraded.status] += 1

            snapshot.timestamp_proof = upgraded.model_dump(mode="json")
            snapshot.chain_of_custody = [
                *snapshot.chain_of_custody,
                CustodyEntry(
                    action="timestamp_upgraded",
                    actor="system",
                    timestamp=_now(),
                    details={"status": upgraded.status, "bitcoin_block": upgraded.bitcoin_block},
                ).model_dump(mode="json"),
            ]

        await session.flush()
        logger.info(f"Timestamp upgrade finished: {stats}")
        return stats

    # ==================== Notary internals ====================

    def _stamp_sync(self, digest: bytes) -> bytes:
        ts_mod, op_mod = self._ots["timestamp"], self._ots["op"]

        detached = ts_mod.DetachedTimestampFile(op_mod.OpSHA256(), ts_mod.Timestamp(digest))
        nonce_stamp = detached.timestamp.ops.add(op_mod.OpAppend(os.urandom(16)))
        merkle_root = nonce_stamp.ops.add(op_mod.OpSHA256())

        submitted = 0
        for url in self.calendar_urls:
            try:
                calendar_stamp = self._ots["calendar"].RemoteCalendar(url).submit(
                    merkle_root.msg, timeout=self.timeout
                )
                merkle_root.merge(calendar_stamp)
                submitted += 1
            except Exception as e:
                logger.warning(f"Calendar {url} rejected submission: {e}")

        if not submitted:
            raise RuntimeError("No calendar server accepted the timestamp")
        return self._serialize(detached)

    def _upgrade_sync(self, ots_bytes: bytes) -> tuple[bytes, bool]:
        detached = self._deserialize(ots_bytes)
        pending_cls = self._ots["notary"].PendingAttestation

        pending = []
        stack = [detached.timestamp]
        while stack:
            stamp = stack.pop()
            pending.extend(
                (stamp, att) for att in stamp.attestations if isinstance(att, pending_cls)
            )
            stack.extend(stamp.ops.values())

        changed = False
        for stamp, attestation in pending:
            try:
                upgraded = self._ots["calendar"].RemoteCalendar(attestation.uri).get_timestamp(
                    stamp.msg, timeout=self.timeout
                )
            except Exception as e:
                logger.debug(f"Calendar {attestation.uri} has no attestation yet: {e}")
                continue
            stamp.merge(upgraded)
            changed = True

        return self._serialize(detached), changed

    def _bitcoin_attestations(self, ots_bytes: bytes) -> list[tuple[int, str]]:
        """Return (block height, merkle root hex) for each Bitcoin attestation."""
        detached = self._deserialize(ots_bytes)
        bitcoin_cls = self._ots["notary"].BitcoinBlockHeaderAttestation
        return [
            (attestation.height, msg[::-1].hex())
            for msg, attestation in detached.timestamp.all_attestations()
            if isinstance(attestation, bitcoin_cls)
        ]

    def _serialize(self, detached) -> bytes:
        ctx = self._ots["serialize"].BytesSerializationContext()
        detached.serialize(ctx)
        return ctx.getbytes()

    def _deserialize(self, ots_bytes: bytes):
        ctx = self._ots["serialize"].BytesDeserializationContext(ots_bytes)
        return self._ots["timestamp"].DetachedTimestampFile.deserialize(ctx)

    async def _block_time(self, height: int, merkle_root: str) -> int | None:
        """Resolve a block's timestamp, requiring its merkle root to match."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.explorer_url}/block-height/{height}")
                response.raise_for_status()
                block_hash = response.text.strip()

                response = await client.get(f"{self.explorer_url}/block/{block_hash}")
                response.raise_for_status()
                block = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Block explorer lookup failed for height {height}: {e}")
            return None

        if not isinstance(block, dict):
            logger.warning(f"Unexpected block explorer response for height {height}")
            return None
        if block.get("merkle_root") != merkle_root:
            logger.warning(f"Merkle root mismatch for block {height}")
            return None

        block_time = block.get("timestamp")
        if not isinstance(block_time, int) or isinstance(block_time, bool):
            logger.warning(f"Block {height} has no usable timestamp")
            return None
        return block_time


def format_timestamp_proof(proof: TimestampProof) -> str:
    """Render a proof as a human-readable block for notices and exports."""

    def _fmt(value: str) -> str:
        try:
            return datetime.fromisoformat(value).strftime("%B %d, %Y %H:%M:%S UTC")
        except ValueError:
            return value

    lines = [
        "=== BLOCKCHAIN TIMESTAMP PROOF ===",
        "",
        f"Evidence Hash (SHA-256): {proof.hash}",
        f"Created: {_fmt(proof.created_at)}",
        f"Status: {proof.status.upper()}",
    ]
    if proof.confirmation_date:
        lines.append(f"Confirmed on Bitcoin: {_fmt(proof.confirmation_date)}")
    if proof.bitcoin_block:
        lines.append(f"Bitcoin Block: #{proof.bitcoin_block}")
    if proof.verification_url:
        lines.extend(["", f"Verify at: {proof.verification_url}"])

    lines.extend([
        "",
        "This timestamp proves the evidence existed at the specified time.",
        "The Bitcoin blockchain serves as an immutable, third-party notary.",
        "This proof is cryptographically verifiable and cannot be forged.",
        "",
    ])
    return "\n".join(lines)
