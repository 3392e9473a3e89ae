"""Port offset allocation for concurrently running dev servers.

Each running worktree holds one integer offset. Its concrete ports are
``base + offset * offset_step`` for every discovered base port, so two live
offsets can never produce overlapping ports.

allocate() and release() contain no await points; under asyncio that makes
check-then-mark atomic with respect to interleaved start/stop calls.
"""

import json
import logging
import re
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from ..errors import CapacityExceededError

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\$\{(\d+)\}")

ENV_FILES_TO_SCAN = [".env", ".env.local", ".env.development", ".env.development.local"]

# Names exported to every spawned dev server
ENV_PORT_OFFSET = "DEVTREE_PORT_OFFSET"
ENV_PORT_LIST = "DEVTREE_PORT_LIST"
ENV_KNOWN_PORTS = "DEVTREE_KNOWN_PORTS"


class PortAllocator:
    """Owns the pool of offsets in [0, max_instances)."""

    def __init__(
        self,
        base_ports: Sequence[int],
        offset_step: int = 1,
        max_instances: int = 10,
        env_mapping: Optional[Dict[str, str]] = None,
    ):
        if offset_step < 1:
            raise ValueError("offset_step must be >= 1")
        if max_instances < 1:
            raise ValueError("max_instances must be >= 1")
        self.base_ports = list(base_ports)
        self.offset_step = offset_step
        self.max_instances = max_instances
        self.env_mapping = dict(env_mapping or {})
        self._allocated: Set[int] = set()

    @classmethod
    def from_config(cls, config) -> "PortAllocator":
        return cls(
            base_ports=config.ports.discovered,
            offset_step=config.ports.offset_step,
            max_instances=config.max_instances,
            env_mapping=config.env_mapping,
        )

    @property
    def allocated(self) -> FrozenSet[int]:
        return frozenset(self._allocated)

    @property
    def is_full(self) -> bool:
        return len(self._allocated) >= self.max_instances

    def allocate(self) -> int:
        """Claim the smallest free offset.

        Raises:
            CapacityExceededError: every offset is held
        """
        for offset in range(self.max_instances):
            if offset not in self._allocated:
                self._allocated.add(offset)
                logger.debug(f"Allocated port offset {offset}")
                return offset
        raise CapacityExceededError(self.max_instances)

    def release(self, offset: Optional[int]) -> None:
        """Return an offset to the pool. Unknown or already-released offsets are ignored."""
        if offset is None or offset not in self._allocated:
            return
        self._allocated.discard(offset)
        logger.debug(f"Released port offset {offset}")

    def shift_for(self, offset: int) -> int:
        return offset * self.offset_step

    def ports_for(self, offset: int) -> List[int]:
        shift = self.shift_for(offset)
        return [port + shift for port in self.base_ports]

    def resolve_template(self, template: str, offset: int) -> str:
        """Replace each ``${<basePort>}`` with that port shifted by the offset."""
        shift = self.shift_for(offset)
        return TEMPLATE_PATTERN.sub(lambda m: str(int(m.group(1)) + shift), template)

    def env_for(self, offset: int) -> Dict[str, str]:
        """Environment variables injected into a dev server holding this offset."""
        ports = self.ports_for(offset)
        env = {
            ENV_PORT_OFFSET: str(self.shift_for(offset)),
            ENV_PORT_LIST: ",".join(str(p) for p in ports),
            ENV_KNOWN_PORTS: json.dumps(self.base_ports),
        }
        if ports:
            env["PORT"] = str(ports[0])
        for name, template in self.env_mapping.items():
            env[name] = self.resolve_template(template, offset)
        return env


def detect_env_mapping(project_dir: Path, base_ports: Sequence[int]) -> Dict[str, str]:
    """Find env vars whose values mention a base port and turn them into templates.

    ``API_URL=http://localhost:4000`` becomes ``{"API_URL": "http://localhost:${4000}"}``.
    Later files win when the same variable appears in several.
    """
    if not base_ports:
        return {}

    # Longest first so 30000 is not rewritten as ${3000}0
    port_strings = sorted((str(p) for p in base_ports), key=len, reverse=True)
    port_pattern = re.compile(r"(?<!\d)(" + "|".join(port_strings) + r")(?!\d)")

    mapping: Dict[str, str] = {}
    for name in ENV_FILES_TO_SCAN:
        env_path = project_dir / name
        if not env_path.is_file():
            continue
        try:
            lines = env_path.read_text().splitlines()
        except OSError as e:
            logger.warning(f"Cannot read {env_path}: {e}")
            continue

        for line in lines:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export "):].strip()
            value = value.strip().strip("\"'")
            if key and port_pattern.search(value):
                mapping[key] = port_pattern.sub(lambda m: "${" + m.group(1) + "}", value)

    return mapping
