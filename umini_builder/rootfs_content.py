"""Static configuration written into the live root and the ISO tree.

Pure data: every function takes typed values and returns file contents.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple

LOCALE = "en_US.UTF-8"
RESOLVED_STUB = "/run/systemd/resolve/stub-resolv.conf"
SECURITY_MIRROR = "http://security.ubuntu.com/ubuntu"


def hosts(hostname: str) -> str:
    return "\n".join(
        [
            "127.0.0.1\tlocalhost",
            f"127.0.1.1\t{hostname}",
            "::1\t\tlocalhost ip6-localhost ip6-loopback",
            "ff02::1\t\tip6-allnodes",
            "ff02::2\t\tip6-allrouters",
            "",
        ]
    )


def locale_gen() -> str:
    return f"{LOCALE} UTF-8\n"


def sources_list(mirror: str, release: str) -> str:
    components = "main restricted universe multiverse"
    return "".join(
        [
            f"deb {mirror} {release} {components}\n",
            f"deb {mirror} {release}-updates {components}\n",
            f"deb {mirror} {release}-backports {components}\n",
            f"deb {SECURITY_MIRROR} {release}-security {components}\n",
        ]
    )


def apt_tuning() -> str:
    return "\n".join(
        [
            'APT::Acquire::Retries "3";',
            'APT::Acquire::http::Timeout "10";',
            'APT::Install-Recommends "false";',
            'APT::Install-Suggests "false";',
            'Acquire::Languages "en";',
            'APT::Get::Assume-Yes "true";',
            'DPkg::Options "--force-confold";',
            'DPkg::Options "--force-confdef";',
            'Dpkg::Use-Pty "0";',
            "",
        ]
    )


def wired_network() -> str:
    return "[Match]\nName=en*\n\n[Network]\nDHCP=yes\n"


def autologin_override(user: str) -> str:
    return (
        "[Service]\n"
        "ExecStart=\n"
        f"ExecStart=-/sbin/agetty --autologin {user} --noclear %I $TERM\n"
    )


def welcome_script(users: Sequence[Tuple[str, str]], root_password: str, live_user: str) -> str:
    accounts = ", ".join([f"{u}/{p}" for u, p in users] + [f"root/{root_password}"])
    return "\n".join(
        [
            "#!/bin/bash",
            'echo -e "\\e[1;32mWelcome to uMini Live!\\e[0m"',
            f'echo -e "Logged in as: {live_user}"',
            f'echo -e "Users: {accounts}"',
            'echo -e "To connect to Wi-Fi: sudo iwctl"',
            "echo -e \"Timezone: $(cat /etc/timezone 2>/dev/null || echo 'UTC')\"",
            "",
        ]
    )


def grub_cfg(hostname: str, live_user: str) -> str:
    args = f"boot=casper username={live_user} hostname={hostname}"
    entries: Iterable[Tuple[str, str]] = [
        (f"Start {hostname} Live", f"{args} quiet splash"),
        (f"Start {hostname} Live (Safe Graphics)", f"{args} quiet splash nomodeset"),
        (f"Start {hostname} Live (Debug Mode)", f"{args} debug"),
        ("Check disc for defects", f"{args} integrity-check quiet splash"),
    ]
    lines = ["set timeout=10", "set default=0", ""]
    for title, cmdline in entries:
        lines += [
            f'menuentry "{title}" {{',
            f"    linux /casper/vmlinuz {cmdline}",
            "    initrd /casper/initrd.img",
            "}",
            "",
        ]
    return "\n".join(lines)


def disk_info(hostname: str, built: str) -> str:
    return f"{hostname} Live System - Built {built}\n"
