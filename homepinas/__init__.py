from __future__ import annotations

import atexit
from typing import Mapping

from dotenv import load_dotenv
from flask import Flask

from nonraid.array_manager import ArrayManager
from nonraid.array_status import ArrayStatusReader
from nonraid.config_manager import ConfigManager
from nonraid.disk_inventory import DiskInventoryReader
from nonraid.provisioner import ProvisioningOrchestrator
from nonraid.scan_scheduler import ScanScheduler
from nonraid.scan_supervisor import ScanSupervisor
from nonraid.share_config import ShareConfigWriter
from nonraid.system_executor import SystemCommandExecutor

# Config reads the environment when it is imported
load_dotenv()

from .config import Config  # noqa: E402
from .logging import init_logging  # noqa: E402
from .storage_routes import storage_bp  # noqa: E402


def create_app(config_object: object | Mapping[str, object] | None = None) -> Flask:
    """Application factory for the HomePiNAS storage API."""
    app = Flask(__name__)

    app.config.from_object(Config)
    if config_object:
        if isinstance(config_object, Mapping):
            app.config.from_mapping(config_object)
        else:
            app.config.from_object(config_object)

    config_manager = ConfigManager(app.config.get('NONRAID_CONFIG_FILE'))
    nonraid_config = config_manager.load_config()

    init_logging(app, nonraid_config.log_level)

    _initialise_extensions(app, config_manager)
    _register_blueprints(app)

    return app


def _initialise_extensions(app: Flask, config_manager: ConfigManager) -> None:
    config = config_manager.load_config()
    executor = SystemCommandExecutor(
        dry_run=app.config.get('NONRAID_DRY_RUN', False),
        use_sudo=config.use_sudo,
        timeout=config.command_timeout
    )
    inventory = DiskInventoryReader(executor)
    scan_supervisor = ScanSupervisor(executor)
    share_writer = ShareConfigWriter(config, executor)
    status_reader = ArrayStatusReader(config, executor, scan_supervisor)
    provisioner = ProvisioningOrchestrator(
        config, executor, share_writer, scan_supervisor, inventory=inventory
    )

    services = {
        'config_manager': config_manager,
        'executor': executor,
        'inventory': inventory,
        'scan_supervisor': scan_supervisor,
        'share_writer': share_writer,
        'status_reader': status_reader,
        'provisioner': provisioner,
        'array_manager': ArrayManager(config, executor, status_reader, scan_supervisor),
        'scan_scheduler': ScanScheduler(config, scan_supervisor, provisioner=provisioner),
    }
    app.extensions['nonraid'] = services

    if app.config.get('ENABLE_SCAN_SCHEDULER') and not app.config.get('TESTING'):
        scan_scheduler = services['scan_scheduler']
        if scan_scheduler.start():
            atexit.register(scan_scheduler.shutdown)


def _register_blueprints(app: Flask) -> None:
    app.register_blueprint(storage_bp)
