"""
nginx configuration generator.

Only the editable region between START_MARKER and END_MARKER is produced
from the model. The surrounding boilerplate comes either from an existing
file (kept byte-for-byte) or from the built-in template.
"""
import itertools
import logging
from typing import List, Optional, Tuple

from acl_architect.models.nginx import CombinedAcl, IpAclGroup, NginxConfig, UrlAclEntry, UrlAclGroup

logger = logging.getLogger(__name__)

START_MARKER = "# Structured ACL Definitions"
END_MARKER = "# END OF CODE TO EDIT, DO NOT EDIT BELOW."

# Above this many signals the denial reason map uses one regex per signal
MAX_ENUMERATED_SIGNALS = 6

INDENT = "    "

NGINX_TEMPLATE_HEAD = """worker_processes auto;
daemon off;
events {
    worker_connections 1024;
}

http {
    log_format main '$remote_addr - $remote_user [$time_local] "$request" '
                    '$status $body_bytes_sent "$http_referer" '
                    '"$http_user_agent" "$http_x_forwarded_for"';
    log_format denied '$remote_addr - [$time_local] "$request" '
                      '$status "$http_user_agent" "$http_referer" '
                      'Host: "$host" URI: "$request_uri" '
                      'Client: "$remote_addr" '
                      'Reason: "$deny_reason"';
    access_log /var/log/nginx/access.log main;
    error_log /var/log/nginx/error.log info;
    access_log /var/log/nginx/denied.log denied if=$deny_log;

#==============================================================================
    # Structured ACL Definitions
"""

NGINX_TEMPLATE_TAIL = """# END OF CODE TO EDIT, DO NOT EDIT BELOW.
# ==============================================================================
    server {
        listen 8080;
        resolver 8.8.8.8 1.1.1.1 ipv6=off;

        # Centralized ACL Check
        if ($access_granted != 1) {
            return 403 "Access Denied: $deny_reason";
        }

        proxy_connect;
        proxy_connect_allow all;
        proxy_connect_connect_timeout 10s;
        proxy_connect_read_timeout 60s;
        proxy_connect_send_timeout 60s;

        proxy_hide_header Upgrade;
        proxy_hide_header X-Powered-By;
        add_header Content-Security-Policy "upgrade-insecure-requests";
        add_header X-Frame-Options "SAMEORIGIN";
        add_header X-XSS-Protection "1; mode=block" always;
        add_header X-Content-Type-Options "nosniff" always;
        add_header Cache-Control "no-transform" always;
        add_header Referrer-Policy no-referrer always;
        add_header X-Robots-Tag none;

        location / {
            if ($access_granted != 1) {
                set $deny_reason "$deny_reason (location level)";
                return 403 "Access Denied: $deny_reason";
            }

            proxy_http_version 1.1;
            proxy_set_header Host $host;
            proxy_set_header Connection "";
            proxy_pass $scheme://$host$request_uri;

            proxy_set_header X-Real-IP $remote_addr;
            proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
            proxy_set_header X-Forwarded-Proto $scheme;

            proxy_connect_timeout 10s;
            proxy_send_timeout 60s;
            proxy_read_timeout 60s;
        }
    }
}
"""


def extract_acl_section(text: str) -> Optional[Tuple[str, str, str]]:
    """
    Split text around the editable region.

    Returns (prefix, section, suffix) where prefix ends with the start marker
    line and suffix begins with the end marker line, or None when either
    marker is missing or they are out of order.
    """
    lines = text.splitlines(keepends=True)
    start = next((i for i, line in enumerate(lines) if line.strip() == START_MARKER), None)
    if start is None:
        return None
    end = next((i for i in range(start + 1, len(lines)) if lines[i].strip() == END_MARKER), None)
    if end is None:
        return None
    prefix = "".join(lines[: start + 1])
    if not prefix.endswith("\n"):
        prefix += "\n"
    return prefix, "".join(lines[start + 1:end]), "".join(lines[end:])


def replace_acl_section(base_text: str, section: str) -> str:
    """Replace the editable region of base_text, keeping everything else intact."""
    parts = extract_acl_section(base_text)
    if parts is None:
        raise ValueError(f"Configuration has no editable region ('{START_MARKER}' ... '{END_MARKER}')")
    prefix, _old, suffix = parts
    return prefix + section + suffix


def _join_names(names: List[str]) -> str:
    if len(names) == 1:
        return names[0]
    return ", ".join(names[:-1]) + " and " + names[-1]


def _comment(description: str) -> str:
    return f"  # {description}" if description else ""


class ConfigGenerator:
    """Serializes an NginxConfig into configuration text."""

    def __init__(self, anchored: bool = False, final_decision: str = "access_granted"):
        """
        Args:
            anchored: Wrap regex URL patterns in ^...$
            final_decision: Combined ACL whose sources feed the denial reason map
        """
        self.anchored = anchored
        self.final_decision = final_decision

    def _url_pattern(self, entry: UrlAclEntry) -> str:
        if not entry.is_regex:
            return f'"{entry.pattern}"'
        pattern = entry.pattern
        if self.anchored:
            if not pattern.startswith("^"):
                pattern = "^" + pattern
            if not pattern.endswith("$") or pattern.endswith("\\$"):
                pattern = pattern + "$"
        prefix = "~*" if entry.case_insensitive else "~"
        return f'"{prefix}{pattern}"'

    def _ip_group(self, group: IpAclGroup) -> List[str]:
        lines = [f"{INDENT}geo ${group.name} {{{_comment(group.description)}"]
        lines.append(f"{INDENT * 2}default 0;")
        for entry in group.entries:
            lines.append(f"{INDENT * 2}{entry.cidr} {entry.value};{_comment(entry.description)}")
        lines.append(f"{INDENT}}}")
        lines.append("")
        return lines

    def _url_group(self, group: UrlAclGroup) -> List[str]:
        lines = [f"{INDENT}map $host ${group.name} {{{_comment(group.description)}"]
        lines.append(f"{INDENT * 2}default 0;")
        for entry in group.entries:
            pattern = self._url_pattern(entry)
            lines.append(f"{INDENT * 2}{pattern:<30} {entry.value};{_comment(entry.description)}")
        lines.append(f"{INDENT}}}")
        lines.append("")
        return lines

    def _combined_acl(self, acl: CombinedAcl) -> List[str]:
        source = "".join(f"${name}" for name in acl.source_groups)
        lines = [f'{INDENT}map "{source}" ${acl.name} {{{_comment(acl.description)}']
        lines.append(f"{INDENT * 2}default 0;")
        for rule in acl.rules:
            lines.append(f'{INDENT * 2}"{rule.pattern}" {rule.value};{_comment(rule.description)}')
        lines.append(f"{INDENT}}}")
        lines.append("")
        return lines

    def _derived(self, config: NginxConfig) -> List[str]:
        """Maps derived from the model: fallback decision, denial reason, denied-request logging."""
        lines = [f"{INDENT}# Derived variables (generated, do not edit)"]
        decision = config.get_combined_acl(self.final_decision)

        if decision is None:
            logger.warning(
                f"No combined ACL named '{self.final_decision}'; generating a deny-by-default decision"
            )
            lines += [
                f"{INDENT}map $remote_addr ${self.final_decision} {{  # No final decision ACL defined",
                f"{INDENT * 2}default 0;",
                f"{INDENT}}}",
                "",
                f"{INDENT}map ${self.final_decision} $deny_reason {{",
                f'{INDENT * 2}default "No access decision configured";',
                f'{INDENT * 2}"1" "";',
                f"{INDENT}}}",
                "",
            ]
        else:
            signals = decision.source_groups
            source = "".join(f"${name}" for name in signals)
            lines.append(f'{INDENT}map "{source}" $deny_reason {{')
            if len(signals) <= MAX_ENUMERATED_SIGNALS:
                for bits in itertools.product("01", repeat=len(signals)):
                    if "0" not in bits:
                        continue
                    failing = [name for name, bit in zip(signals, bits) if bit == "0"]
                    lines.append(f'{INDENT * 2}"{"".join(bits)}" "Denied by {_join_names(failing)}";')
            else:
                for i, name in enumerate(signals):
                    lines.append(f'{INDENT * 2}"~^.{{{i}}}0" "Denied by {name}";')
            lines.append(f'{INDENT * 2}default "";')
            lines.append(f"{INDENT}}}")
            lines.append("")

        lines += [
            f"{INDENT}map ${self.final_decision} $deny_log {{",
            f"{INDENT * 2}default 1;",
            f'{INDENT * 2}"1" 0;',
            f"{INDENT}}}",
            "",
        ]
        return lines

    def generate_acl_section(self, config: NginxConfig) -> str:
        """Render the editable region for a model."""
        lines = [f"{INDENT}# IP-based ACL Groups"]
        for group in config.ip_acl_groups:
            lines += self._ip_group(group)

        lines.append(f"{INDENT}# URL-based ACL Groups")
        for group in config.url_acl_groups:
            lines += self._url_group(group)

        lines.append(f"{INDENT}# Combined ACL Logic")
        for acl in config.combined_acls:
            lines += self._combined_acl(acl)

        lines += self._derived(config)
        return "\n".join(lines) + "\n"

    def generate(self, config: NginxConfig, base_text: Optional[str] = None) -> str:
        """
        Render a complete configuration.

        Args:
            config: ACL model
            base_text: Existing configuration whose boilerplate should be kept

        Returns:
            Configuration text
        """
        section = self.generate_acl_section(config)
        if base_text is not None:
            if extract_acl_section(base_text) is not None:
                return replace_acl_section(base_text, section)
            logger.warning("Base configuration has no editable region markers; using the built-in template")
        return NGINX_TEMPLATE_HEAD + section + NGINX_TEMPLATE_TAIL


def generate_nginx_config(
    config: NginxConfig,
    base_text: Optional[str] = None,
    anchored: bool = False,
    final_decision: str = "access_granted",
) -> str:
    """Render a complete configuration for a model."""
    return ConfigGenerator(anchored=anchored, final_decision=final_decision).generate(config, base_text)
