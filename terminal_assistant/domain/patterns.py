"""Deterministic pattern library.

Known question shapes (fail2ban bans, containers, failed units, disk, network,
logs, processes) map to fixed multi-step plans. They skip the reasoning
oracle entirely: steps are chosen by dependency, outputs are parsed by named
extraction rules, and the final answer comes from a deterministic formatter.

A plan is a serializable `PatternPlan`; the callables it refers to are looked
up by key in this module, so the plan can live in graph state.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from terminal_assistant.domain.extraction import (
    DOCKER_INSPECT_TEMPLATE,
    SYSTEMD_STATUS_TEMPLATE,
    fill_template,
    normalize_command,
    parse_container_state,
    parse_df,
    parse_docker_names,
    parse_failed_units,
    parse_jail_list,
    parse_jail_status,
    parse_unit_properties,
)
from terminal_assistant.graph.state import PatternPlan, PatternStep

logger = logging.getLogger(__name__)

DISK_ALERT_PERCENT = 80

StepExtractor = Callable[[Dict[str, Any], str, Optional[str]], None]


# --- step extractors: (context, output, entity) ---------------------------

def _extract_jail_list(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context["jails"] = parse_jail_list(output)
    context.setdefault("jail_status", {})


def _extract_jail_status(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    if entity:
        context.setdefault("jail_status", {})[entity] = parse_jail_status(output)


def _extract_containers(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context["containers"] = parse_docker_names(output)


def _extract_container_state(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    if entity:
        context.setdefault("container_state", {})[entity] = parse_container_state(output)


def _extract_docker_stats(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    stats: Dict[str, Dict[str, str]] = {}
    for line in output.splitlines()[1:]:
        parts = re.split(r"\s{2,}", line.strip())
        if len(parts) >= 4:
            stats[parts[1]] = {"cpu": parts[2], "memory": parts[3]}
    context["container_stats"] = stats


def _extract_failed_units(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context["failed_units"] = parse_failed_units(output)


def _extract_unit_state(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    if entity:
        context.setdefault("unit_state", {})[entity] = parse_unit_properties(output)


def _extract_running_units(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context["running_units"] = re.findall(
        r"^\s*(\S+\.service)\s+loaded\s+active\s+running", output, re.MULTILINE
    )


def _extract_df(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    rows = parse_df(output)
    context["filesystems"] = rows
    context["needs_du"] = any(row["use_percent"] > DISK_ALERT_PERCENT for row in rows)


def _extract_du(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    entries = []
    for line in output.splitlines():
        parts = line.split(None, 1)
        if len(parts) == 2:
            entries.append({"size": parts[0], "path": parts[1]})
    context["largest_dirs"] = entries


def _extract_interfaces(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    interfaces: Dict[str, List[str]] = {}
    current = None
    for line in output.splitlines():
        header = re.match(r"^\d+:\s+([^:@\s]+)", line)
        if header:
            current = header.group(1)
            interfaces[current] = []
            continue
        addr = re.match(r"^\s+inet6?\s+(\S+)", line)
        if addr and current:
            interfaces[current].append(addr.group(1))
    context["interfaces"] = interfaces


def _extract_ports(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    ports: List[str] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 5 and parts[0] in {"tcp", "udp"}:
            port = parts[4].rsplit(":", 1)[-1]
            if port and port not in ports:
                ports.append(port)
    context["listening_ports"] = ports


def _extract_journal(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context["error_lines"] = [
        line for line in output.splitlines() if line.strip() and not line.startswith("-- ")
    ]


def _extract_log_size(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    parts = output.split()
    context["log_size"] = parts[0] if parts else ""


def _extract_top_processes(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    processes = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 10)
        if len(parts) == 11:
            processes.append({"user": parts[0], "pid": parts[1], "cpu": parts[2], "mem": parts[3], "command": parts[10]})
    context["top_processes"] = processes


def _extract_free(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    for line in output.splitlines():
        parts = line.split()
        if parts and parts[0] == "Mem:" and len(parts) >= 4:
            context["memory"] = {"total": parts[1], "used": parts[2], "free": parts[3]}


def _extract_raw(context: Dict[str, Any], output: str, entity: Optional[str]) -> None:
    context.setdefault("raw", []).append(output[:500])


STEP_EXTRACTORS: Dict[str, StepExtractor] = {
    "jail_list": _extract_jail_list,
    "jail_status": _extract_jail_status,
    "containers": _extract_containers,
    "container_state": _extract_container_state,
    "docker_stats": _extract_docker_stats,
    "failed_units": _extract_failed_units,
    "unit_state": _extract_unit_state,
    "running_units": _extract_running_units,
    "df": _extract_df,
    "du": _extract_du,
    "interfaces": _extract_interfaces,
    "ports": _extract_ports,
    "journal": _extract_journal,
    "log_size": _extract_log_size,
    "top_processes": _extract_top_processes,
    "free": _extract_free,
    "raw": _extract_raw,
}


# --- aggregators and formatters --------------------------------------------

def _errors_prefix(context: Dict[str, Any]) -> str:
    errors = context.get("errors", {})
    if not errors:
        return ""
    first_id, first_error = next(iter(errors.items()))
    lines = (first_error or "").strip().splitlines()
    return f"Step '{first_id}' failed: {lines[0] if lines else 'no output'}"


def aggregate_fail2ban(context: Dict[str, Any]) -> Dict[str, Any]:
    jail_status: Dict[str, Dict[str, Any]] = context.get("jail_status", {})
    jail_details: Dict[str, int] = {}
    all_ips: List[str] = []
    for jail in context.get("jails", []):
        status = jail_status.get(jail)
        if status is None:
            continue
        jail_details[jail] = int(status.get("banned") or 0)
        for ip in status.get("ips", []):
            if ip not in all_ips:
                all_ips.append(ip)
    return {
        "total_banned": sum(jail_details.values()),
        "jail_details": jail_details,
        "all_ips": all_ips,
        "jail_count": len(context.get("jails", [])),
    }


def format_fail2ban(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "jails" not in context:
        return _errors_prefix(context) or "fail2ban status could not be read."
    if not context["jails"]:
        return "fail2ban is running but reports no jails, so no IPs are banned."
    total = aggregate["total_banned"]
    details = ", ".join(f"{jail}: {count}" for jail, count in aggregate["jail_details"].items())
    noun = "IP is" if total == 1 else "IPs are"
    jail_noun = "jail" if aggregate["jail_count"] == 1 else "jails"
    answer = f"{total} {noun} currently banned in fail2ban across {aggregate['jail_count']} {jail_noun}: {details}."
    missing = [jail for jail in context["jails"] if jail not in aggregate["jail_details"]]
    if missing:
        answer += f" Status could not be read for: {', '.join(missing)}."
    return answer


def aggregate_docker(context: Dict[str, Any]) -> Dict[str, Any]:
    containers = context.get("containers", [])
    states = context.get("container_state", {})
    return {
        "count": len(containers),
        "containers": containers,
        "states": {name: states[name] for name in containers if name in states},
        "stats": context.get("container_stats", {}),
    }


def format_docker(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "containers" not in context:
        return _errors_prefix(context) or "Docker containers could not be listed."
    count = aggregate["count"]
    if count == 0:
        return "No Docker containers are running."
    noun = "container is" if count == 1 else "containers are"
    answer = f"{count} Docker {noun} running: {', '.join(aggregate['containers'])}."
    restarted = [
        f"{name} ({state['restarts']})" for name, state in aggregate["states"].items() if state["restarts"]
    ]
    if restarted:
        answer += f" Restart counts: {', '.join(restarted)}."
    not_running = [
        f"{name} is {state['status']}" for name, state in aggregate["states"].items() if state["status"] != "running"
    ]
    if not_running:
        answer += f" {'; '.join(not_running)}."
    if aggregate["stats"]:
        usage = "; ".join(
            f"{name} CPU {values['cpu']}, memory {values['memory']}" for name, values in aggregate["stats"].items()
        )
        answer += f" Resource usage: {usage}."
    return answer


def aggregate_systemd(context: Dict[str, Any]) -> Dict[str, Any]:
    states = context.get("unit_state", {})
    return {
        "failed": context.get("failed_units", []),
        "results": {unit: states[unit].get("Result", "") for unit in context.get("failed_units", []) if unit in states},
        "running_count": len(context.get("running_units", [])),
    }


def format_systemd(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "failed_units" not in context:
        return _errors_prefix(context) or "systemd unit status could not be read."
    failed = aggregate["failed"]
    if failed:
        noun = "service has" if len(failed) == 1 else "services have"
        labels = [
            f"{unit} ({aggregate['results'][unit]})" if aggregate["results"].get(unit) else unit for unit in failed
        ]
        answer = f"{len(failed)} systemd {noun} failed: {', '.join(labels)}."
    else:
        answer = "No systemd services have failed."
    if "running_units" in context:
        answer += f" {aggregate['running_count']} services are running."
    return answer


def aggregate_disk(context: Dict[str, Any]) -> Dict[str, Any]:
    rows = context.get("filesystems", [])
    return {
        "filesystems": rows,
        "over_threshold": [row for row in rows if row["use_percent"] > DISK_ALERT_PERCENT],
        "largest_dirs": context.get("largest_dirs", []),
    }


def format_disk(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "filesystems" not in context:
        return _errors_prefix(context) or "Disk usage could not be read."
    usage = ", ".join(
        f"{row['mount']} {row['use_percent']}% ({row['used']} of {row['size']} used)"
        for row in aggregate["filesystems"]
    )
    answer = f"Disk usage: {usage}."
    over = aggregate["over_threshold"]
    if over:
        answer += f" {len(over)} filesystem(s) above {DISK_ALERT_PERCENT}%: {', '.join(row['mount'] for row in over)}."
    if aggregate["largest_dirs"]:
        top = ", ".join(f"{entry['path']} ({entry['size']})" for entry in aggregate["largest_dirs"][:5])
        answer += f" Largest directories: {top}."
    return answer


def aggregate_network(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"interfaces": context.get("interfaces", {}), "ports": context.get("listening_ports", [])}


def format_network(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "interfaces" not in context and "listening_ports" not in context:
        return _errors_prefix(context) or "Network information could not be read."
    parts = []
    if aggregate["interfaces"]:
        rendered = ", ".join(
            f"{name} ({', '.join(addrs) if addrs else 'no address'})" for name, addrs in aggregate["interfaces"].items()
        )
        parts.append(f"Interfaces: {rendered}.")
    if "listening_ports" in context:
        ports = aggregate["ports"]
        parts.append(f"Listening ports ({len(ports)}): {', '.join(ports) if ports else 'none'}.")
    return " ".join(parts)


def aggregate_logs(context: Dict[str, Any]) -> Dict[str, Any]:
    lines = context.get("error_lines", [])
    return {"error_count": len(lines), "latest": lines[-1] if lines else "", "log_size": context.get("log_size", "")}


def format_logs(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "error_lines" not in context:
        return _errors_prefix(context) or "The system journal could not be read."
    count = aggregate["error_count"]
    if count == 0:
        answer = "No recent error entries in the system journal."
    else:
        answer = f"{count} recent error entries in the system journal. Latest: {aggregate['latest']}"
    if aggregate["log_size"]:
        answer += f" /var/log uses {aggregate['log_size']}."
    return answer


def aggregate_process(context: Dict[str, Any]) -> Dict[str, Any]:
    return {"top": context.get("top_processes", []), "memory": context.get("memory", {})}


def format_process(aggregate: Dict[str, Any], context: Dict[str, Any]) -> str:
    if "top_processes" not in context:
        return _errors_prefix(context) or "The process list could not be read."
    top = ", ".join(f"{proc['command'].split()[0]} (pid {proc['pid']}, {proc['cpu']}% CPU)" for proc in aggregate["top"][:5])
    answer = f"Top processes by CPU: {top}." if top else "No processes reported."
    memory = aggregate["memory"]
    if memory:
        answer += f" Memory: {memory['used']} used of {memory['total']} ({memory['free']} free)."
    return answer


# --- pattern definitions ----------------------------------------------------

@dataclass
class PatternDefinition:
    key: str
    intent: str
    matcher: re.Pattern
    steps: List[PatternStep]
    aggregator: Callable[[Dict[str, Any]], Dict[str, Any]]
    formatter: Callable[[Dict[str, Any], Dict[str, Any]], str]


DEFAULT_PATTERNS: List[PatternDefinition] = [
    PatternDefinition(
        key="fail2ban",
        intent="count banned IPs in fail2ban",
        matcher=re.compile(r"\bfail2ban\b|\bbanned\b|\bjails?\b"),
        steps=[
            PatternStep(id="list_jails", command="fail2ban-client status", extract="jail_list"),
            PatternStep(
                id="check_each_jail",
                command="fail2ban-client status {entity}",
                extract="jail_status",
                depends_on=["list_jails"],
                for_each="jails",
            ),
        ],
        aggregator=aggregate_fail2ban,
        formatter=format_fail2ban,
    ),
    PatternDefinition(
        key="docker",
        intent="list running docker containers",
        matcher=re.compile(r"\bdocker\b|\bcontainers?\b"),
        steps=[
            PatternStep(id="list_containers", command="docker ps", extract="containers"),
            PatternStep(
                id="inspect_each_container",
                command=DOCKER_INSPECT_TEMPLATE,
                extract="container_state",
                depends_on=["list_containers"],
                for_each="containers",
            ),
            PatternStep(
                id="container_stats",
                command="docker stats --no-stream",
                extract="docker_stats",
                depends_on=["list_containers"],
                optional=True,
                when="containers",
            ),
        ],
        aggregator=aggregate_docker,
        formatter=format_docker,
    ),
    PatternDefinition(
        key="systemd",
        intent="report failed systemd services",
        matcher=re.compile(
            r"\bsystemd\b|\bsystemctl\b|\bfailed\s+(?:units?|services?)\b|\bservices?\b.*\b(?:fail\w*|running|down)\b"
        ),
        steps=[
            PatternStep(id="failed_units", command="systemctl --failed --no-pager", extract="failed_units"),
            PatternStep(
                id="check_each_failed_unit",
                command=SYSTEMD_STATUS_TEMPLATE,
                extract="unit_state",
                depends_on=["failed_units"],
                for_each="failed_units",
            ),
            PatternStep(
                id="running_units",
                command="systemctl list-units --type=service --state=running --no-pager",
                extract="running_units",
                optional=True,
            ),
        ],
        aggregator=aggregate_systemd,
        formatter=format_systemd,
    ),
    PatternDefinition(
        key="disk",
        intent="report disk usage",
        matcher=re.compile(r"\bdisk\b|\bstorage\b|\bfilesystems?\b|\bdf\b|\bfree\s+space\b"),
        steps=[
            PatternStep(id="df", command="df -h", extract="df"),
            PatternStep(
                id="largest_dirs",
                command="du -xh --max-depth=1 / 2>/dev/null | sort -rh | head -10",
                extract="du",
                depends_on=["df"],
                when="needs_du",
            ),
        ],
        aggregator=aggregate_disk,
        formatter=format_disk,
    ),
    PatternDefinition(
        key="network",
        intent="describe network interfaces and listening ports",
        matcher=re.compile(r"\bnetwork\b|\binterfaces?\b|\bip\s+address(?:es)?\b|\blistening\b|\bports?\b"),
        steps=[
            PatternStep(id="interfaces", command="ip a", extract="interfaces"),
            PatternStep(id="ports", command="ss -tuln", extract="ports"),
        ],
        aggregator=aggregate_network,
        formatter=format_network,
    ),
    PatternDefinition(
        key="logs",
        intent="summarize recent system log errors",
        matcher=re.compile(r"\blogs?\b|\bjournal\b|\bsyslog\b"),
        steps=[
            PatternStep(id="journal_errors", command="journalctl -p err -n 20 --no-pager", extract="journal"),
            PatternStep(id="log_size", command="du -sh /var/log 2>/dev/null", extract="log_size", optional=True),
        ],
        aggregator=aggregate_logs,
        formatter=format_logs,
    ),
    PatternDefinition(
        key="process",
        intent="list top processes and memory usage",
        matcher=re.compile(r"\bprocess(?:es)?\b|\bcpu\b|\bmemory\b|\bram\b"),
        steps=[
            PatternStep(id="top_processes", command="ps aux --sort=-%cpu | head -10", extract="top_processes"),
            PatternStep(id="memory", command="free -h", extract="free"),
        ],
        aggregator=aggregate_process,
        formatter=format_process,
    ),
]


class PatternLibrary:
    """Maps known questions to deterministic multi-step plans."""

    def __init__(self, patterns: Optional[List[PatternDefinition]] = None) -> None:
        self._patterns: Dict[str, PatternDefinition] = {}
        for pattern in patterns or DEFAULT_PATTERNS:
            self._patterns[pattern.key] = pattern

    def match(self, question: str) -> Optional[PatternPlan]:
        """Return a fresh plan for the first pattern the question matches."""

        lowered = (question or "").lower()
        for pattern in self._patterns.values():
            if pattern.matcher.search(lowered):
                logger.info("Question matched pattern %s", pattern.key)
                return PatternPlan(
                    intent=pattern.intent,
                    pattern_key=pattern.key,
                    steps=[step.model_copy(deep=True) for step in pattern.steps],
                )
        return None

    def _step(self, plan: PatternPlan, step_id: str) -> Optional[PatternStep]:
        for step in plan.steps:
            if step.id == step_id:
                return step
        return None

    def _expand(self, plan: PatternPlan, step: PatternStep) -> List[tuple]:
        """Return (command, entity) pairs the step stands for right now."""

        if step.for_each:
            return [(fill_template(step.command, entity), entity) for entity in plan.context.get(step.for_each, [])]
        return [(step.command, None)]

    def _is_satisfied(self, plan: PatternPlan, step: PatternStep) -> bool:
        if not self._dependencies_met(plan, step):
            return False
        if step.when and not plan.context.get(step.when):
            return True
        if step.for_each:
            executed = {normalize_command(command) for command in plan.executed}
            return all(normalize_command(command) in executed for command, _ in self._expand(plan, step))
        return step.id in plan.satisfied

    def _dependencies_met(self, plan: PatternPlan, step: PatternStep) -> bool:
        for dependency in step.depends_on:
            other = self._step(plan, dependency)
            if other is None or not self._is_satisfied(plan, other):
                return False
        return True

    def get_next_commands(self, plan: PatternPlan) -> List[str]:
        """Return runnable commands whose dependencies are satisfied."""

        executed = {normalize_command(command) for command in plan.executed}
        commands: List[str] = []
        for step in plan.steps:
            if not self._dependencies_met(plan, step):
                continue
            if step.when and not plan.context.get(step.when):
                continue
            if not step.for_each and step.id in plan.satisfied:
                continue
            for command, _ in self._expand(plan, step):
                if normalize_command(command) not in executed and command not in commands:
                    commands.append(command)
        return commands

    def is_complete(self, plan: PatternPlan) -> bool:
        """True when every required step, per-entity expansions included, is done."""

        return all(self._is_satisfied(plan, step) for step in plan.steps if not step.optional)

    def record(self, plan: PatternPlan, command: str, output: str, succeeded: bool = True) -> bool:
        """Mark the step behind ``command`` executed and run its extraction rule.

        Returns False when the command does not belong to the plan.
        """

        target = normalize_command(command)
        for step in plan.steps:
            for expanded, entity in self._expand(plan, step):
                if normalize_command(expanded) != target:
                    continue
                plan.executed.append(command)
                if not step.for_each and step.id not in plan.satisfied:
                    plan.satisfied.append(step.id)
                if succeeded:
                    STEP_EXTRACTORS.get(step.extract, _extract_raw)(plan.context, output or "", entity)
                else:
                    plan.context.setdefault("errors", {})[step.id] = output or ""
                return True
        return False

    def aggregate(self, plan: PatternPlan) -> Dict[str, Any]:
        """Fold per-entity extracted values into a summary."""

        return self._patterns[plan.pattern_key].aggregator(plan.context)

    def format_answer(self, plan: PatternPlan) -> str:
        pattern = self._patterns[plan.pattern_key]
        return pattern.formatter(pattern.aggregator(plan.context), plan.context)
