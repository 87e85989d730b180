"""Working-memory extraction rules.

After every command the orchestration loop calls `extract_into_memory`, which
pulls structured values (jail names and ban counts, container names, failed
units, disk usage) out of raw output. Rules that enumerate named entities also
register a follow-up template so the evaluator can tell which entities still
need a per-entity command.
"""

from __future__ import annotations

import re
import shlex
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from terminal_assistant.graph.state import WorkingMemory

RAW_SNIPPET_CHARS = 500
IPV4_RE = re.compile(r"\b\d{1,3}(?:\.\d{1,3}){3}\b")

FAIL2BAN_JAIL_TEMPLATE = "fail2ban-client status {entity}"
DOCKER_INSPECT_TEMPLATE = "docker inspect --format '{{.Name}} {{.State.Status}} restarts={{.RestartCount}}' {entity}"
SYSTEMD_STATUS_TEMPLATE = "systemctl show {entity} --property=ActiveState,SubState,Result --no-pager"


def normalize_command(command: str) -> str:
    """Collapse whitespace and drop a leading sudo so equivalent commands compare equal."""

    text = " ".join((command or "").split())
    for prefix in ("sudo -n ", "sudo "):
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    return text


def fill_template(template: str, entity: str) -> str:
    """Substitute one entity into a follow-up template, shell-quoted."""

    return template.replace("{entity}", shlex.quote(entity))


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


# --- fail2ban ---------------------------------------------------------------

def parse_jail_list(output: str) -> List[str]:
    """Return jail names from ``fail2ban-client status`` output."""

    match = re.search(r"Jail list:\s*(.*)", output)
    if not match:
        return []
    return [name for name in re.split(r"[,\s]+", match.group(1).strip()) if name]


def parse_jail_status(output: str) -> Dict[str, Any]:
    """Return ban figures from ``fail2ban-client status <jail>`` output.

    ``banned`` prefers the "Currently banned" figure, then the number of
    listed IPs, then "Total banned".
    """

    currently = _to_int(_search_group(r"Currently banned:\s*(\d+)", output))
    total = _to_int(_search_group(r"Total banned:\s*(\d+)", output))
    ip_line = _search_group(r"Banned IP list:\s*(.*)", output)
    ips = [token for token in (ip_line or "").split() if token]
    if not ips:
        ips = IPV4_RE.findall(output)
    if currently is not None:
        banned = currently
    elif ips:
        banned = len(ips)
    else:
        banned = total if total is not None else 0
    return {"banned": banned, "total_banned": total, "ips": ips}


def _search_group(pattern: str, text: str) -> Optional[str]:
    match = re.search(pattern, text)
    return match.group(1) if match else None


def _fail2ban_status(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    jail = (match.group(1) or "").strip()
    if not jail:
        if "Jail list:" not in output:
            return
        jails = parse_jail_list(output)
        register_entity_list(memory, "jails", jails, FAIL2BAN_JAIL_TEMPLATE)
        memory.discovered.entities["total_jails"] = len(jails)
        memory.data_extracted.setdefault("jails", {})
        return
    details = parse_jail_status(output)
    memory.data_extracted.setdefault("jails", {})[jail.strip("'\"")] = details


# --- docker -----------------------------------------------------------------

def parse_docker_names(output: str) -> List[str]:
    """Return container names from ``docker ps`` output."""

    names: List[str] = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("CONTAINER ID"):
            continue
        parts = re.split(r"\s{2,}", line.strip())
        if len(parts) >= 2:
            names.append(parts[-1])
        else:
            names.append(parts[0])
    return names


def parse_container_state(output: str) -> Dict[str, Any]:
    """Return status and restart count from one `DOCKER_INSPECT_TEMPLATE` line."""

    parts = output.strip().split()
    restarts = _to_int(_search_group(r"restarts=(\d+)", output))
    return {"status": parts[1] if len(parts) >= 2 else "unknown", "restarts": restarts or 0}


def _docker_ps(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    if re.search(r"\s-(?:\w*q|-quiet)\b", command):
        return
    names = parse_docker_names(output)
    register_entity_list(memory, "containers", names, DOCKER_INSPECT_TEMPLATE)
    memory.discovered.entities["running_containers"] = len(names)
    memory.data_extracted["containers"] = {"count": len(names), "names": names}


# --- systemd ----------------------------------------------------------------

def parse_failed_units(output: str) -> List[str]:
    return re.findall(r"^[\s●*]*(\S+\.service)\b", output, re.MULTILINE)


def parse_unit_properties(output: str) -> Dict[str, str]:
    """Return ``Key=Value`` lines from ``systemctl show`` output."""

    properties: Dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key:
            properties[key] = value
    return properties


def _systemctl_failed(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    units = parse_failed_units(output)
    register_entity_list(memory, "failed_services", units, SYSTEMD_STATUS_TEMPLATE)
    memory.discovered.entities["failed_services"] = len(units)
    memory.data_extracted["failed_services"] = {"count": len(units), "units": units}


def _systemctl_running(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    units = re.findall(r"^\s*(\S+\.service)\s+loaded\s+active\s+running", output, re.MULTILINE)
    memory.data_extracted["running_services"] = {"count": len(units), "units": units}


# --- disk / memory / network / logs ----------------------------------------

def parse_df(output: str) -> List[Dict[str, Any]]:
    """Return one entry per filesystem from ``df -h`` output."""

    rows: List[Dict[str, Any]] = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 6 or not parts[4].endswith("%"):
            continue
        rows.append(
            {
                "filesystem": parts[0],
                "size": parts[1],
                "used": parts[2],
                "available": parts[3],
                "use_percent": _to_int(parts[4].rstrip("%")) or 0,
                "mount": " ".join(parts[5:]),
            }
        )
    return rows


def _df(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    rows = parse_df(output)
    if not rows:
        return
    memory.data_extracted["disk"] = rows
    memory.discovered.entities["filesystems_over_80"] = sum(1 for row in rows if row["use_percent"] > 80)


def _free(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    for line in output.splitlines():
        parts = line.split()
        if parts and parts[0] in {"Mem:", "Swap:"} and len(parts) >= 4:
            memory.data_extracted.setdefault("memory", {})[parts[0].rstrip(":").lower()] = {
                "total": parts[1],
                "used": parts[2],
                "free": parts[3],
            }


def _listening_ports(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    ports: List[str] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 5 and parts[0] in {"tcp", "udp"}:
            local = parts[4]
            port = local.rsplit(":", 1)[-1]
            if port and port not in ports:
                ports.append(port)
    memory.data_extracted["listening_ports"] = {"count": len(ports), "ports": ports}


def _journal_errors(memory: WorkingMemory, command: str, output: str, match: re.Match) -> None:
    lines = [line for line in output.splitlines() if line.strip() and not line.startswith("-- ")]
    memory.data_extracted["log_errors"] = {"count": len(lines), "lines": lines[:20]}


Rule = Tuple[re.Pattern, Callable[[WorkingMemory, str, str, re.Match], None]]

EXTRACTION_RULES: List[Rule] = [
    (re.compile(r"^fail2ban-client\s+status(?:\s+(\S+))?\s*$"), _fail2ban_status),
    (re.compile(r"^docker\s+(?:container\s+)?(?:ps|ls)\b"), _docker_ps),
    (re.compile(r"^systemctl\s+(?:list-units\s+)?(?:.*\s)?--(?:failed|state=failed)\b"), _systemctl_failed),
    (re.compile(r"^systemctl\s+list-units\b.*--state=running"), _systemctl_running),
    (re.compile(r"^df\b"), _df),
    (re.compile(r"^free\b"), _free),
    (re.compile(r"^(?:ss|netstat)\s+-\w*l"), _listening_ports),
    (re.compile(r"^journalctl\b.*-p\s*(?:err|3)\b"), _journal_errors),
]


def register_entity_list(memory: WorkingMemory, category: str, names: Iterable[str], template: str) -> None:
    """Record an enumerated entity list and its per-entity follow-up."""

    ordered: List[str] = []
    for name in names:
        if name and name not in ordered:
            ordered.append(name)
    memory.discovered.lists[category] = ordered
    memory.discovered.follow_up_templates[category] = template


def missing_follow_ups(memory: WorkingMemory, executed_commands: Iterable[str]) -> List[str]:
    """Return one follow-up command per enumerated entity not yet inspected."""

    executed = {normalize_command(command) for command in executed_commands}
    missing: List[str] = []
    for category, names in memory.discovered.lists.items():
        template = memory.discovered.follow_up_templates.get(category)
        if not template:
            continue
        for name in names:
            command = fill_template(template, name)
            if normalize_command(command) not in executed and command not in missing:
                missing.append(command)
    return missing


def extract_into_memory(
    memory: WorkingMemory,
    command: str,
    output: str,
    executed_commands: Iterable[str] = (),
    succeeded: bool = True,
) -> WorkingMemory:
    """Apply every matching extraction rule and refresh pending follow-ups.

    Failed commands only contribute their raw snippet; their output is usually
    an error message that the structured rules would misread.
    """

    normalized = normalize_command(command)
    memory.raw[command] = (output or "")[:RAW_SNIPPET_CHARS]
    if succeeded:
        for pattern, handler in EXTRACTION_RULES:
            match = pattern.search(normalized)
            if match:
                handler(memory, normalized, output or "", match)
    stripped = (output or "").strip()
    if succeeded and re.fullmatch(r"\d+", stripped):
        memory.data_extracted.setdefault("counts", {})[command] = int(stripped)
    memory.discovered.needs_iteration = missing_follow_ups(memory, list(executed_commands) + [command])
    return memory
