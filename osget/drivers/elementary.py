"""elementary OS images produced by the distribution's own ISO build script."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from osget.drivers.base import BuildDriver, DriverParameters, SourcePlan, register_driver
from osget.utils import normalize_arch

# Release -> build configuration passed to build.sh ("" keeps its default).
ELEMENTARY_CONFIGS = {
    "8-daily": "etc/terraform-daily-8.0-azure.conf",
    "stable": "",
}
ELEMENTARY_ARCHES = {"x86_64"}


@register_driver
class ElementaryDriver(BuildDriver):
    family = "elementary"
    workspace_excludes = ("builds",)

    @property
    def tooling_dir(self) -> Optional[Path]:
        return self.settings.elementary_build_dir

    def resolve_parameters(self, params: DriverParameters) -> Dict[str, str]:
        if normalize_arch(params.arch) not in ELEMENTARY_ARCHES:
            raise self._unsupported("architecture", params.arch, ELEMENTARY_ARCHES)
        if params.release_name not in ELEMENTARY_CONFIGS:
            raise self._unsupported("release", params.release, ELEMENTARY_CONFIGS)
        if params.edition:
            raise self._unsupported("edition", params.edition, ["<none>"])
        return {"config": ELEMENTARY_CONFIGS[params.release_name]}

    def identify_source(self, tokens: Dict[str, str]) -> Optional[SourcePlan]:
        return SourcePlan(source_id=tokens["config"] or "default configuration")

    def assemble_command(self, tokens: Dict[str, str]) -> List[str]:
        cmd = ["./build.sh"]
        if tokens["config"]:
            cmd.append(tokens["config"])
        return cmd

    def locate_output(self) -> Optional[Path]:
        found = sorted(self.work_dir.glob("builds/*/*.iso"))
        return found[0] if found else None
