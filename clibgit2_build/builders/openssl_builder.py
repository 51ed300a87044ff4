"""
OpenSSL-specific builder implementation
"""

import os
from typing import Dict

from ..exceptions import CommandError
from ..models import TaskOutput
from .base_builder import BaseBuilder


class OpenSSLBuilder(BaseBuilder):
    """Special builder for OpenSSL, which uses its own perl Configure script"""

    MAKE = "make"

    def _configure_env(self) -> Dict[str, str]:
        env = self.env.copy()
        cflags = self.replace_all(self.platform.openssl_cflags)
        if cflags:
            env["CFLAGS"] = " ".join(cflags)
        else:
            env.pop("CFLAGS", None)
        return env

    def configure(self, output: TaskOutput) -> bool:
        """Configure OpenSSL build"""
        configure_script = self.source_dir / "Configure"
        if not configure_script.exists():
            output.write(f"OpenSSL configure script not found: {configure_script}")
            return False

        configure_cmd = ["perl", str(configure_script), self.platform.openssl_target]
        configure_cmd.extend(self.replace_all(self.dep.configure_args))

        self.run_command(configure_cmd, output, env=self._configure_env())
        return True

    def build(self, output: TaskOutput) -> bool:
        """Build OpenSSL"""
        cmd = [self.MAKE, f"-j{os.cpu_count() or 1}"]
        self.run_command(cmd, output, env=self._configure_env())
        return True

    def install(self, output: TaskOutput) -> bool:
        """Install OpenSSL"""
        for target in self.dep.install_targets:
            self.run_command([self.MAKE, target], output)

        for target in self.dep.optional_install_targets:
            try:
                self.run_command([self.MAKE, target], output)
            except CommandError:
                output.write(f"Optional install target '{target}' failed, continuing...")
                self.logger.warning(f"{self.name} ({self.platform.name}): "
                                    f"optional install target '{target}' failed")

        return True
