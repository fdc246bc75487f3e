from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from moacs.config import UNDER_UTILIZATION_THRESHOLD
from moacs.resources import ResourceModel

logger = logging.getLogger(__name__)


def host_cpu_utilization(model: ResourceModel, host_id: int, vm_ids: Optional[List[int]] = None) -> float:
    """Current CPU utilization, unchecked so an overcommitted host still reports."""
    if vm_ids is None:
        vm_ids = list(model.hosts[host_id].vm_ids)
    return model.raw_utilization(host_id, vm_ids)[0]


def overloaded_host_ids(model: ResourceModel) -> List[int]:
    """Active hosts whose CPU utilization is above the over threshold."""
    return [
        host_id for host_id, host in model.hosts.items()
        if host.active and host.vm_ids and host_cpu_utilization(model, host_id) > model.over_threshold
    ]


def underloaded_host_ids(model: ResourceModel, under_threshold: float = UNDER_UTILIZATION_THRESHOLD) -> List[int]:
    """Active, non-empty, not overloaded hosts at or below the under threshold."""
    hosts = []
    for host_id, host in model.hosts.items():
        if not host.active or not host.vm_ids:
            continue
        if model.is_overloaded(host_id, list(host.vm_ids)):
            continue
        if host_cpu_utilization(model, host_id) <= under_threshold:
            hosts.append(host_id)
    return hosts


def hosts_under_or_overloaded(model: ResourceModel,
                              under_threshold: float = UNDER_UTILIZATION_THRESHOLD) -> Tuple[List[int], List[int]]:
    """(overloaded, underloaded) host ids; both empty means nothing to consolidate."""
    return overloaded_host_ids(model), underloaded_host_ids(model, under_threshold)


def vms_to_migrate_from_overloaded_host(model: ResourceModel, host_id: int) -> List[int]:
    """
    VMs to take off an overloaded host, busiest first.

    The resident with the highest CPU utilization of its own capacity is
    removed until the host is back at or below the threshold, lower id first
    on ties. Idle and pending VMs are never picked.

    Returns:
        the selected VM ids in removal order, or an empty list when the host
        is not overloaded or no removal brings it back under the threshold
    """
    vms = model.vms
    remaining = list(model.hosts[host_id].vm_ids)
    if not remaining or host_cpu_utilization(model, host_id, remaining) <= model.over_threshold:
        return []

    selected: List[int] = []
    while remaining and host_cpu_utilization(model, host_id, remaining) > model.over_threshold:
        busy = [vm_id for vm_id in remaining if vms[vm_id].cpu_used_mips > 0]
        if not busy:
            break
        busiest = max(busy, key=lambda vm_id: (vms[vm_id].cpu_usage, -vm_id))
        remaining.remove(busiest)
        selected.append(busiest)

    if remaining and host_cpu_utilization(model, host_id, remaining) > model.over_threshold:
        logger.debug("[Consolidation] host %s cannot be relieved by removing VMs", host_id)
        return []
    return selected


def vms_to_migrate_from_underloaded_host(model: ResourceModel, host_id: int) -> List[int]:
    """All residents, provided every one of them is busy; otherwise none."""
    vms = model.vms
    residents = list(model.hosts[host_id].vm_ids)
    if residents and all(vms[vm_id].created and vms[vm_id].cpu_used_mips > 0 for vm_id in residents):
        return residents
    return []


def select_vms_to_migrate(model: ResourceModel,
                          under_threshold: float = UNDER_UTILIZATION_THRESHOLD) -> Tuple[List[int], List[int]]:
    """
    Consolidation batch for the current snapshot.

    Returns:
        (vm_ids, vacated_host_ids): VMs to re-place, and the underloaded hosts
        that are being emptied and so should not receive VMs
    """
    overloaded, underloaded = hosts_under_or_overloaded(model, under_threshold)
    selected: List[int] = []
    vacated: List[int] = []

    for host_id in overloaded:
        picked = vms_to_migrate_from_overloaded_host(model, host_id)
        selected.extend(vm_id for vm_id in picked if vm_id not in selected)

    for host_id in underloaded:
        picked = vms_to_migrate_from_underloaded_host(model, host_id)
        if picked:
            vacated.append(host_id)
            selected.extend(vm_id for vm_id in picked if vm_id not in selected)

    logger.info("[Consolidation] %d overloaded, %d underloaded hosts; %d VMs selected",
                len(overloaded), len(underloaded), len(selected))
    return selected, vacated
