"""
Command and script builders for the benchmark scheduler.

Contains:
- job_scripts: mpirun command lines and sbatch scripts
"""

from .job_scripts import (
    SBATCH_TEMPLATE,
    TEMPLATE_DIR,
    ScriptBuilder,
    build_mpirun_command,
    mpirun_path,
)
