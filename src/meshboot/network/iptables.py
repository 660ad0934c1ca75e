# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/network/iptables.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from itertools import permutations
from typing import List, Sequence, Tuple

from meshboot.config.models import NetworkSpec
from meshboot.execution.runner import CommandRunner

log = logging.getLogger("meshboot")


class Presence(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class Position(str, Enum):
    INSERT = "-I"
    APPEND = "-A"


@dataclass(frozen=True)
class IptablesChain:
    table: str
    name: str

    def __str__(self) -> str:
        return f"{self.table}/{self.name}"


@dataclass(frozen=True)
class IptablesRule:
    table: str
    chain: str
    spec: Tuple[str, ...]
    position: Position = Position.INSERT

    def __str__(self) -> str:
        return f"{self.table}/{self.chain} {' '.join(self.spec)}"


DOCKER_CHAINS: Tuple[IptablesChain, ...] = (
    IptablesChain("nat", "DOCKER"),
    IptablesChain("filter", "DOCKER"),
    IptablesChain("filter", "DOCKER-ISOLATION-STAGE-1"),
    IptablesChain("filter", "DOCKER-ISOLATION-STAGE-2"),
    IptablesChain("filter", "DOCKER-USER"),
)

DOCKER_RULES: Tuple[IptablesRule, ...] = (
    # jump rules wiring the chains into the built-in hooks
    IptablesRule("nat", "PREROUTING", ("-m", "addrtype", "--dst-type", "LOCAL", "-j", "DOCKER")),
    IptablesRule("nat", "OUTPUT", ("!", "-d", "127.0.0.0/8", "-m", "addrtype", "--dst-type", "LOCAL", "-j", "DOCKER")),
    IptablesRule("filter", "FORWARD", ("-j", "DOCKER-USER")),
    IptablesRule("filter", "FORWARD", ("-j", "DOCKER-ISOLATION-STAGE-1")),
    # default fall-through rules
    IptablesRule("filter", "DOCKER-USER", ("-j", "RETURN"), Position.APPEND),
    IptablesRule("filter", "DOCKER-ISOLATION-STAGE-1", ("-j", "RETURN"), Position.APPEND),
    IptablesRule("filter", "DOCKER-ISOLATION-STAGE-2", ("-j", "RETURN"), Position.APPEND),
)


def mesh_acl_rules(networks: Sequence[NetworkSpec]) -> List[IptablesRule]:
    """Both directions for every unordered pair: N*(N-1) ACCEPT rules."""
    return [
        IptablesRule(
            "filter",
            "DOCKER-USER",
            ("-s", str(src.subnet), "-d", str(dst.subnet), "-j", "ACCEPT"),
        )
        for src, dst in permutations(networks, 2)
    ]


@dataclass
class ReconcileReport:
    created: List[str] = field(default_factory=list)
    present: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def merge(self, other: "ReconcileReport") -> "ReconcileReport":
        self.created += other.created
        self.present += other.present
        self.failed += other.failed
        return self

    def summary(self) -> str:
        return f"{len(self.created)} created, {len(self.present)} present, {len(self.failed)} failed"


class IptablesReconciler:
    """
    Tiny declarative reconciler for the Docker packet-filter plumbing.

    Each chain and rule is checked first and mutated only when absent, so
    running it any number of times converges on the same ruleset. A failed
    mutation is recorded and logged, never raised: the next run re-checks.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        binary: str = "iptables",
        chains: Sequence[IptablesChain] = DOCKER_CHAINS,
        rules: Sequence[IptablesRule] = DOCKER_RULES,
    ):
        self.runner = runner.with_label("iptables")
        self.binary = binary
        self.chains = tuple(chains)
        self.rules = tuple(rules)

    # ------------------ observation ------------------

    def chain_presence(self, chain: IptablesChain) -> Presence:
        ok = self.runner.ok([self.binary, "-t", chain.table, "-n", "-L", chain.name])
        return Presence.PRESENT if ok else Presence.ABSENT

    def rule_presence(self, rule: IptablesRule) -> Presence:
        ok = self.runner.ok([self.binary, "-t", rule.table, "-C", rule.chain, *rule.spec])
        return Presence.PRESENT if ok else Presence.ABSENT

    # ------------------ mutation ------------------

    def ensure_chain(self, chain: IptablesChain, report: ReconcileReport) -> None:
        if self.chain_presence(chain) is Presence.PRESENT:
            report.present.append(f"chain {chain}")
            return
        if self.runner.ok([self.binary, "-t", chain.table, "-N", chain.name]):
            log.debug("created chain %s", chain)
            report.created.append(f"chain {chain}")
        else:
            log.warning("could not create chain %s", chain)
            report.failed.append(f"chain {chain}")

    def ensure_rule(self, rule: IptablesRule, report: ReconcileReport) -> None:
        if self.rule_presence(rule) is Presence.PRESENT:
            report.present.append(f"rule {rule}")
            return
        if self.runner.ok([self.binary, "-t", rule.table, rule.position.value, rule.chain, *rule.spec]):
            log.debug("added rule %s", rule)
            report.created.append(f"rule {rule}")
        else:
            log.warning("could not add rule %s", rule)
            report.failed.append(f"rule {rule}")

    # ------------------ public API ------------------

    def reconcile(self) -> ReconcileReport:
        """Ensure every Docker chain and jump/default rule exists."""
        report = ReconcileReport()
        for chain in self.chains:
            self.ensure_chain(chain, report)
        for rule in self.rules:
            self.ensure_rule(rule, report)
        return report

    def reconcile_acl(self, networks: Sequence[NetworkSpec]) -> ReconcileReport:
        """Ensure the full-mesh ACCEPT rules between the managed networks."""
        report = ReconcileReport()
        self.ensure_chain(IptablesChain("filter", "DOCKER-USER"), report)
        for rule in mesh_acl_rules(networks):
            self.ensure_rule(rule, report)
        return report
