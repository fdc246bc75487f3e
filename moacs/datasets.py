from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from moacs.config import MB_PER_GB, OVER_UTILIZATION_THRESHOLD
from moacs.models import Host, Vm


@dataclass(frozen=True)
class InstanceType:
    name: str
    pes: int
    mips: float          # per core
    ram_gb: float
    power_idle: float = 0.0
    power_max: float = 0.0


# c4 family, every core at 2500 MIPS
VM_TYPES = [
    InstanceType("c4.large", 2, 2500, 3.75),
    InstanceType("c4.xlarge", 4, 2500, 7.5),
    InstanceType("c4.2xlarge", 8, 2500, 15.0),
    InstanceType("c4.4xlarge", 16, 2500, 30.0),
]

# Power figures follow the SPECpower HP ProLiant ML110 G3/G4/G5 servers (watts at 0% and 100%)
HOST_TYPES = [
    InstanceType("medium", 1, 2500, 2.0, 86.0, 117.0),
    InstanceType("large", 2, 2500, 4.0, 86.0, 117.0),
    InstanceType("xlarge", 4, 2500, 8.0, 93.7, 135.0),
    InstanceType("2xlarge", 8, 2700, 16.0, 93.7, 135.0),
    InstanceType("4xlarge", 16, 2700, 32.0, 105.0, 169.0),
    InstanceType("8xlarge", 32, 2700, 128.0, 105.0, 169.0),
]


def generate_datacenter(num_hosts: int = 10,
                        num_vms: int = 20,
                        seed: int = 42,
                        created_fraction: float = 0.5,
                        threshold: float = OVER_UTILIZATION_THRESHOLD) -> Tuple[List[Host], List[Vm]]:
    """
    Generate a heterogeneous data center snapshot.

    Host sizes are drawn with weights that keep the small types rare.
    Roughly ``created_fraction`` of the VMs are running, packed first-fit
    onto hosts without exceeding ``threshold``; the rest
    (and any running VM that does not fit anywhere) are pending.

    Returns:
        - hosts with their resident VM ids
        - every VM, running and pending
    """
    rng = np.random.default_rng(seed)

    # ------------------------------------------------------------------
    # 1. Hosts: biased towards 2xlarge..8xlarge
    # ------------------------------------------------------------------
    weights = np.array([0.05, 0.1, 0.15, 0.25, 0.25, 0.2])
    host_types = [HOST_TYPES[i] for i in rng.choice(len(HOST_TYPES), size=num_hosts, p=weights)]

    # ------------------------------------------------------------------
    # 2. VMs: uniform over the c4 sizes, usage 30-85% when running
    # ------------------------------------------------------------------
    vms: List[Vm] = []
    residents: List[List[int]] = [[] for _ in range(num_hosts)]
    used_mips = np.zeros(num_hosts)
    used_ram = np.zeros(num_hosts)
    used_pes = np.zeros(num_hosts)

    for vm_id in range(num_vms):
        vm_type = VM_TYPES[int(rng.integers(len(VM_TYPES)))]
        ram = vm_type.ram_gb * MB_PER_GB
        vm = Vm(vm_id=vm_id, pes=vm_type.pes, mips=vm_type.mips, ram=ram)

        if rng.random() < created_fraction:
            cpu_usage = round(float(rng.uniform(0.3, 0.85)), 2)
            ram_usage = round(float(rng.uniform(0.3, 0.85)), 2)
            for host_id, host_type in enumerate(host_types):
                host_mips = host_type.pes * host_type.mips
                host_ram = host_type.ram_gb * MB_PER_GB
                mips = used_mips[host_id] + vm.total_mips * cpu_usage
                ram_used = used_ram[host_id] + ram * ram_usage
                if used_pes[host_id] + vm.pes > host_type.pes:
                    continue
                if mips / host_mips > threshold or ram_used / host_ram > threshold:
                    continue
                used_pes[host_id] += vm.pes
                used_mips[host_id] = mips
                used_ram[host_id] = ram_used
                residents[host_id].append(vm_id)
                vm = Vm(vm_id=vm_id, pes=vm.pes, mips=vm.mips, ram=ram, created=True,
                        host_id=host_id, cpu_usage=cpu_usage, ram_usage=ram_usage)
                break
        vms.append(vm)

    hosts = [
        Host(host_id=host_id,
             pes=host_type.pes,
             mips=host_type.mips,
             ram=host_type.ram_gb * MB_PER_GB,
             active=bool(residents[host_id]),
             vm_ids=tuple(residents[host_id]),
             power_idle=host_type.power_idle,
             power_max=host_type.power_max)
        for host_id, host_type in enumerate(host_types)
    ]
    return hosts, vms
