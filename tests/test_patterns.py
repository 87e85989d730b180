"""Deterministic pattern plans."""

from __future__ import annotations

from terminal_assistant.domain.extraction import DOCKER_INSPECT_TEMPLATE, SYSTEMD_STATUS_TEMPLATE, fill_template
from terminal_assistant.domain.patterns import PatternLibrary


def test_question_matching():
    library = PatternLibrary()
    assert library.match("How many IPs are banned by fail2ban?").pattern_key == "fail2ban"
    assert library.match("Which docker containers are running?").pattern_key == "docker"
    assert library.match("Did any systemd services fail?").pattern_key == "systemd"
    assert library.match("How much disk space is left?").pattern_key == "disk"
    assert library.match("What ports are listening?").pattern_key == "network"
    assert library.match("Show me recent errors in the journal").pattern_key == "logs"
    assert library.match("what is using the cpu?").pattern_key == "process"
    assert library.match("what is this machine called?") is None


def test_fail2ban_steps_follow_dependencies():
    library = PatternLibrary()
    plan = library.match("banned IPs?")

    assert library.get_next_commands(plan) == ["fail2ban-client status"]
    assert not library.is_complete(plan)

    library.record(plan, "fail2ban-client status", "Jail list:\tsshd, apache")
    assert library.get_next_commands(plan) == ["fail2ban-client status sshd", "fail2ban-client status apache"]
    assert not library.is_complete(plan)

    library.record(plan, "fail2ban-client status sshd", "Currently banned:\t3")
    assert not library.is_complete(plan)
    assert library.get_next_commands(plan) == ["fail2ban-client status apache"]

    library.record(plan, "fail2ban-client status apache", "Currently banned:\t0")
    assert library.is_complete(plan)
    assert library.get_next_commands(plan) == []

    aggregate = library.aggregate(plan)
    assert aggregate["total_banned"] == 3
    assert aggregate["jail_details"] == {"sshd": 3, "apache": 0}
    assert library.format_answer(plan) == (
        "3 IPs are currently banned in fail2ban across 2 jails: sshd: 3, apache: 0."
    )


def test_unrelated_command_is_not_recorded():
    library = PatternLibrary()
    plan = library.match("banned IPs?")
    assert library.record(plan, "uptime", "up 3 days") is False
    assert plan.executed == []


def test_failed_step_is_reported_in_answer():
    library = PatternLibrary()
    plan = library.match("banned IPs?")
    library.record(plan, "fail2ban-client status", "bash: fail2ban-client: command not found", succeeded=False)

    assert library.get_next_commands(plan) == []
    assert library.format_answer(plan).startswith("Step 'list_jails' failed: bash: fail2ban-client")


def test_optional_step_runs_only_when_condition_holds():
    library = PatternLibrary()
    plan = library.match("how much disk space is left?")
    library.record(plan, "df -h", "Filesystem Size Used Avail Use% Mounted on\n/dev/sda1 50G 20G 30G 40% /")

    assert library.get_next_commands(plan) == []
    assert library.is_complete(plan)
    assert library.format_answer(plan) == "Disk usage: / 40% (20G of 50G used)."


def test_disk_over_threshold_queues_du():
    library = PatternLibrary()
    plan = library.match("how much disk space is left?")
    library.record(plan, "df -h", "Filesystem Size Used Avail Use% Mounted on\n/dev/sda1 50G 45G 5G 90% /")

    next_commands = library.get_next_commands(plan)
    assert len(next_commands) == 1
    assert next_commands[0].startswith("du -xh")


def test_docker_plan_inspects_every_container():
    library = PatternLibrary()
    plan = library.match("what containers are running?")
    library.record(plan, "docker ps", "CONTAINER ID   IMAGE   NAMES\nabc   nginx   web\ndef   redis   cache")
    inspect_web = fill_template(DOCKER_INSPECT_TEMPLATE, "web")
    inspect_cache = fill_template(DOCKER_INSPECT_TEMPLATE, "cache")

    assert library.get_next_commands(plan) == [inspect_web, inspect_cache, "docker stats --no-stream"]
    assert not library.is_complete(plan)

    library.record(plan, inspect_web, "/web running restarts=0")
    library.record(plan, inspect_cache, "/cache restarting restarts=4")

    assert library.is_complete(plan)
    assert library.format_answer(plan) == (
        "2 Docker containers are running: web, cache. Restart counts: cache (4). cache is restarting."
    )


def test_systemd_plan_checks_every_failed_unit():
    library = PatternLibrary()
    plan = library.match("Did any systemd services fail?")
    library.record(plan, "systemctl --failed --no-pager", "● nginx.service loaded failed failed nginx\n")
    check_nginx = fill_template(SYSTEMD_STATUS_TEMPLATE, "nginx.service")

    assert check_nginx in library.get_next_commands(plan)
    assert not library.is_complete(plan)

    library.record(plan, check_nginx, "ActiveState=failed\nSubState=failed\nResult=exit-code\n")

    assert library.is_complete(plan)
    assert library.format_answer(plan) == "1 systemd service has failed: nginx.service (exit-code)."
