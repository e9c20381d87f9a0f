"""COS GPU Installer - Main package

Installs NVIDIA kernel drivers on Container-Optimized OS from inside a
privileged container. Safe to re-run on every boot: each run re-derives
its progress from the host and only does the work that is still missing.
"""

__version__ = "1.0.0"
__package_name__ = "cos-gpu-installer"
