# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/dns/cloudflare.py

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import requests

from meshboot.bootstrap.state import PENDING_ADDRESS
from meshboot.config.models import DnsSettings
from meshboot.errors import DnsApiError

log = logging.getLogger("meshboot")

NOT_FOUND = "NOT_FOUND"
LOOKUP_ERROR = "ERROR"


class DnsOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


def apex_zone(fqdn: str) -> str:
    """ats.example.com -> example.com"""
    labels = [label for label in fqdn.strip(".").split(".") if label]
    if len(labels) < 2:
        raise DnsApiError(f"Cannot derive a zone from {fqdn!r}")
    return ".".join(labels[-2:])


class CloudflareClient:
    """
    Minimal Cloudflare v4 client for A records.

    Endpoints used:
    - GET  /zones?name=<apex>
    - GET  /zones/<zone>/dns_records?name=<fqdn>&type=A
    - PUT  /zones/<zone>/dns_records/<record>
    - POST /zones/<zone>/dns_records

    Anything the API answers that is not the documented envelope raises
    DnsApiError.
    """

    def __init__(self, settings: DnsSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Auth-Email": settings.email,
                "Authorization": f"Bearer {settings.api_token}",
                "Content-Type": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base.rstrip('/')}/{path.lstrip('/')}"

    def _call(self, method: str, path: str, **kwargs) -> Any:
        r = self.session.request(method, self._url(path), timeout=self.settings.timeout, **kwargs)
        try:
            body = r.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        if r.status_code >= 400 or body.get("success") is not True:
            errors = body.get("errors") or r.text
            raise DnsApiError(f"{method} {path} failed: {r.status_code} {errors}")
        return body.get("result")

    @staticmethod
    def _first(result: Any, what: str) -> Optional[Dict[str, Any]]:
        if not result:
            return None
        if not isinstance(result, list) or not isinstance(result[0], dict) or not result[0].get("id"):
            raise DnsApiError(f"Unexpected {what} lookup result: {result!r}")
        return result[0]

    def zone_id(self, zone: str) -> str:
        found = self._first(self._call("GET", "/zones", params={"name": zone}), "zone")
        if found is None:
            raise DnsApiError(f"Zone {zone} not found")
        return str(found["id"])

    def get_record(self, zone_id: str, fqdn: str) -> Optional[Dict[str, Any]]:
        result = self._call("GET", f"/zones/{zone_id}/dns_records", params={"name": fqdn, "type": "A"})
        return self._first(result, "record")

    def find_record(self, zone_id: str, fqdn: str) -> Optional[str]:
        record = self.get_record(zone_id, fqdn)
        return str(record["id"]) if record else None

    def _payload(self, fqdn: str, address: str) -> Dict[str, Any]:
        return {"type": "A", "name": fqdn, "content": address, "ttl": self.settings.ttl}

    def update(self, zone_id: str, record_id: str, fqdn: str, address: str) -> None:
        self._call("PUT", f"/zones/{zone_id}/dns_records/{record_id}", json=self._payload(fqdn, address))

    def create(self, zone_id: str, fqdn: str, address: str) -> None:
        self._call("POST", f"/zones/{zone_id}/dns_records", json=self._payload(fqdn, address))


class DnsReconciler:
    """
    Points the node's FQDN(s) at its mesh address.

    Upsert per record: one update when the record exists, one create when it
    does not. Peer records are only rewritten when they point elsewhere. Any
    provider or network failure is logged and reported as FAILED; nothing
    here is fatal to the bootstrap.
    """

    def __init__(self, settings: DnsSettings, client: Optional[CloudflareClient] = None):
        self.settings = settings
        self.client = client or CloudflareClient(settings)

    def upsert(self, fqdn: str, address: str) -> DnsOutcome:
        return self._apply(fqdn, address, keep_matching=False)

    def verify(self, fqdn: str, address: str) -> DnsOutcome:
        """Like upsert, but leaves a record that already holds ADDRESS alone."""
        return self._apply(fqdn, address, keep_matching=True)

    def _apply(self, fqdn: str, address: str, *, keep_matching: bool) -> DnsOutcome:
        try:
            zone_id = self.client.zone_id(apex_zone(fqdn))
            record = self.client.get_record(zone_id, fqdn)
            if record is None:
                self.client.create(zone_id, fqdn, address)
                log.info("DNS record %s created -> %s", fqdn, address)
                return DnsOutcome.CREATED
            if keep_matching and record.get("content") == address:
                log.info("DNS record %s already points to %s", fqdn, address)
                return DnsOutcome.UNCHANGED
            self.client.update(zone_id, str(record["id"]), fqdn, address)
            log.info("DNS record %s updated -> %s", fqdn, address)
            return DnsOutcome.UPDATED
        except (requests.RequestException, DnsApiError) as exc:
            log.warning("DNS update for %s failed: %s", fqdn, exc)
            return DnsOutcome.FAILED

    def reconcile(self, address: str) -> DnsOutcome:
        """Outcome of the primary record; extra records are logged only."""
        if not address or address == PENDING_ADDRESS:
            log.info("mesh address pending, skipping DNS")
            return DnsOutcome.SKIPPED
        if not self.settings.configured:
            log.info("DNS not configured, skipping")
            return DnsOutcome.SKIPPED

        outcome = self.upsert(self.settings.fqdn, address)
        for fqdn in self.extra_records():
            time.sleep(self.settings.rate_limit_delay)
            self.upsert(fqdn, address)
        return outcome

    def extra_records(self) -> List[str]:
        return [r for r in self.settings.extra_records if r and r != self.settings.fqdn]

    def peer_records(self) -> Dict[str, str]:
        """Peer hostname -> <host>.<zone of the primary FQDN>."""
        if not self.settings.peer_records:
            return {}
        try:
            zone = apex_zone(self.settings.fqdn)
        except DnsApiError as exc:
            log.warning("peer DNS records skipped: %s", exc)
            return {}
        return {host: f"{host}.{zone}" for host in self.settings.peer_records if host}

    def reconcile_peers(self, lookup: Callable[[str], Optional[str]]) -> Dict[str, DnsOutcome]:
        """
        Make every configured peer record point at that peer's mesh address.

        ``lookup`` maps a mesh hostname to its IPv4 (None when the peer is not
        in the netmap); ``peer_fallback`` covers peers that are offline.
        """
        if not self.settings.configured:
            return {}
        outcomes: Dict[str, DnsOutcome] = {}
        for host, fqdn in self.peer_records().items():
            address = lookup(host) or self.settings.peer_fallback.get(host)
            if not address:
                log.warning("no mesh address known for peer %s, leaving %s alone", host, fqdn)
                outcomes[fqdn] = DnsOutcome.SKIPPED
                continue
            time.sleep(self.settings.rate_limit_delay)
            outcomes[fqdn] = self.verify(fqdn, address)
        return outcomes

    def key_records(self) -> List[str]:
        names = [self.settings.fqdn, *self.extra_records(), *self.peer_records().values()]
        return list(dict.fromkeys(n for n in names if n))

    def summary(self) -> Dict[str, str]:
        """Current A content of every managed record (NOT_FOUND / ERROR otherwise)."""
        current: Dict[str, str] = {}
        for fqdn in self.key_records():
            try:
                record = self.client.get_record(self.client.zone_id(apex_zone(fqdn)), fqdn)
            except (requests.RequestException, DnsApiError) as exc:
                log.debug("DNS lookup for %s failed: %s", fqdn, exc)
                current[fqdn] = LOOKUP_ERROR
                continue
            current[fqdn] = str(record.get("content") or NOT_FOUND) if record else NOT_FOUND
        return current
