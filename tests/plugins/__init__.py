"""
Tests for the Warehouse Table Sync Plugin Modules

These tests cover window resolution, classification, the table engines, the
audit trail and the orchestrator, using mocked source/target connections.
"""

import os
import sys

# Add plugins directory to Python path (Airflow does this automatically at runtime)
plugins_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'plugins'))
if plugins_dir not in sys.path:
    sys.path.insert(0, plugins_dir)
