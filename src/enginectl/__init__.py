"""
enginectl - control client for a remote container engine REST control plane.

This package keeps a live, periodically reconciled view of a remote engine's
containers, images, networks and volumes, dispatches lifecycle actions
against it, and decodes the engine's multiplexed log stream.

Features:
  - Per-resource reconciliation loops with cancelable poll sessions
  - Lifecycle actions (start/stop/create/delete, pull, compose, build)
    followed by an immediate out-of-cycle refresh
  - Framed stdout/stderr log decoding with tail-N line buffering
  - Engine online/offline tracking

Main Components:
  - transport.py: HTTP request primitive against the engine endpoint
  - backend.py: Typed resource operations (ResourceClient)
  - logstream.py: Multiplexed log frame decoder
  - state.py: Thread-safe snapshot store and poll session workers
  - reconcile.py: Subscription facade over the poll sessions
  - actions.py: Action dispatcher
  - model.py: Data structures (ContainerRecord, ImageRecord, ...)
  - cli.py: Console front-end (python -m enginectl)

Dependencies:
  - docker>=7.0.0 (APIClient session, SDK exception base)
  - requests
  - PyYAML
  - rich (console tables)
  - click (command line)
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/enginectl/logs/enginectl.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/enginectl.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        xdg_data_home = Path.home() / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'enginectl' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'enginectl.log')
    except (PermissionError, OSError):
        return '/tmp/enginectl.log'
