import logging

from flask import Blueprint, current_app, jsonify, request

from nonraid.exceptions import (
    AlreadyRunning, NonRAIDError, ProvisioningInProgress, ValidationError
)

logger = logging.getLogger(__name__)

storage_bp = Blueprint('storage_api', __name__, url_prefix='/api/storage')


def _services():
    return current_app.extensions['nonraid']


def _error(message, status_code):
    return jsonify({"success": False, "error": message}), status_code


def _exclusive(name):
    return _services()['provisioner'].exclusive_operation(name)


@storage_bp.route('/disks', methods=['GET'])
def api_list_disks():
    try:
        disks = _services()['inventory'].list_disks()
        return jsonify({"success": True, "disks": [disk.to_dict() for disk in disks]})
    except NonRAIDError as e:
        logger.error(f"Disk listing failed: {e}")
        return _error("Failed to list disks", 500)


@storage_bp.route('/array/status', methods=['GET'])
def api_array_status():
    try:
        snapshot = _services()['status_reader'].get_array_status()
        return jsonify({"success": True, **snapshot.to_dict()})
    except NonRAIDError as e:
        logger.error(f"Array status failed: {e}")
        return _error("Failed to get array status", 500)


@storage_bp.route('/array/configure', methods=['POST'])
def api_configure_array():
    data = request.get_json(silent=True) or {}
    try:
        _services()['provisioner'].begin_provisioning(
            data.get('dataDisks'),
            data.get('parityDisk'),
            data.get('shareMode')
        )
        return jsonify({"success": True, "message": "Array configuration started"}), 202
    except ValidationError as e:
        return _error(str(e), 400)
    except ProvisioningInProgress as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Array configuration could not start: {e}")
        return _error("Failed to start array configuration", 500)


@storage_bp.route('/array/configure/progress', methods=['GET'])
def api_configure_progress():
    state = _services()['provisioner'].get_provisioning_state()
    return jsonify({"success": True, **state.to_dict()})


@storage_bp.route('/array/configure/cancel', methods=['POST'])
def api_configure_cancel():
    if not _services()['provisioner'].cancel():
        return _error("No array configuration in progress", 409)
    return jsonify({"success": True, "message": "Array configuration cancellation requested"})


@storage_bp.route('/array/start', methods=['POST'])
def api_start_array():
    try:
        with _exclusive('start'):
            _services()['array_manager'].start_array()
        return jsonify({"success": True, "message": "Array started"})
    except ProvisioningInProgress as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Array start failed: {e}")
        return _error("Failed to start array", 500)


@storage_bp.route('/array/stop', methods=['POST'])
def api_stop_array():
    try:
        with _exclusive('stop'):
            _services()['array_manager'].stop_array()
        return jsonify({"success": True, "message": "Array stopped"})
    except ProvisioningInProgress as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Array stop failed: {e}")
        return _error("Failed to stop array", 500)


@storage_bp.route('/array/check', methods=['POST'])
def api_start_check():
    try:
        with _exclusive('check'):
            _services()['scan_supervisor'].start_scan()
        return jsonify({"success": True, "message": "Parity check started"}), 202
    except (AlreadyRunning, ProvisioningInProgress) as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Parity check failed to start: {e}")
        return _error("Failed to start parity check", 500)


@storage_bp.route('/array/check/progress', methods=['GET'])
def api_check_progress():
    state = _services()['scan_supervisor'].get_scan_state()
    return jsonify({"success": True, **state.to_dict()})


@storage_bp.route('/array/check/cancel', methods=['POST'])
def api_check_cancel():
    if not _services()['scan_supervisor'].cancel():
        return _error("No parity check in progress", 409)
    return jsonify({"success": True, "message": "Parity check cancellation requested"})


@storage_bp.route('/array/add', methods=['POST'])
def api_add_disk():
    data = request.get_json(silent=True) or {}
    disk = data.get('disk')
    if not disk:
        return _error("Disk required", 400)
    slot = data.get('slot')
    if slot is not None and (isinstance(slot, bool) or not isinstance(slot, int)):
        return _error("Slot must be an integer", 400)
    try:
        with _exclusive('add'):
            assigned = _services()['array_manager'].add_disk(disk, slot)
        return jsonify({"success": True, "message": f"Disk added as slot {assigned}", "slot": assigned})
    except ValidationError as e:
        return _error(str(e), 400)
    except ProvisioningInProgress as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Adding {disk} failed: {e}")
        return _error("Failed to add disk", 500)


@storage_bp.route('/array/replace/<int:slot>', methods=['POST'])
def api_replace_disk(slot):
    data = request.get_json(silent=True) or {}
    disk = data.get('disk')
    if not disk:
        return _error("Disk required", 400)
    try:
        with _exclusive('replace'):
            _services()['array_manager'].replace_disk(slot, disk)
        return jsonify({"success": True, "message": f"Disk replacement started for slot {slot}"}), 202
    except ValidationError as e:
        return _error(str(e), 400)
    except (AlreadyRunning, ProvisioningInProgress) as e:
        return _error(str(e), 409)
    except NonRAIDError as e:
        logger.error(f"Replacing slot {slot} failed: {e}")
        return _error("Failed to replace disk", 500)


@storage_bp.route('/shares', methods=['GET'])
def api_list_shares():
    try:
        shares = _services()['share_writer'].list_shares()
        return jsonify({"success": True, "shares": shares})
    except NonRAIDError as e:
        logger.error(f"Share listing failed: {e}")
        return _error("Failed to list shares", 500)
