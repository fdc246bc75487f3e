import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from moacs.config import OptimizerConfig  # noqa: E402
from moacs.models import Host, Vm  # noqa: E402


@pytest.fixture
def small_config():
    return OptimizerConfig(generations=8, ants=6, seed=7)


@pytest.fixture
def scenario_a():
    """3 pending VMs (1/2/4 cores, 1/2/2 GB) and two empty 4-core 4 GB hosts."""
    vms = [
        Vm(vm_id=1, pes=1, mips=1000, ram=1024),
        Vm(vm_id=2, pes=2, mips=1000, ram=2048),
        Vm(vm_id=3, pes=4, mips=1000, ram=2048),
    ]
    hosts = [
        Host(host_id=10, pes=4, mips=1000, ram=4096),
        Host(host_id=11, pes=4, mips=1000, ram=4096),
    ]
    return vms, hosts


@pytest.fixture
def lock_in():
    """
    Three full hosts X=20, Y=21, Z=22 whose residents swap round in a cycle:
    vm 1 on Y -> X, vm 2 on Z -> Y, vm 3 on X -> Z.

    Call with spare=True to add an empty host 23 outside the cycle.
    """
    def build(spare: bool = False):
        vms = [
            Vm(vm_id=1, pes=2, mips=1000, ram=2048, created=True, host_id=21, cpu_usage=0.8, ram_usage=0.5),
            Vm(vm_id=2, pes=2, mips=1000, ram=2048, created=True, host_id=22, cpu_usage=0.8, ram_usage=0.5),
            Vm(vm_id=3, pes=2, mips=1000, ram=2048, created=True, host_id=20, cpu_usage=0.8, ram_usage=0.5),
        ]
        hosts = [
            Host(host_id=20, pes=2, mips=1000, ram=4096, vm_ids=(3,)),
            Host(host_id=21, pes=2, mips=1000, ram=4096, vm_ids=(1,)),
            Host(host_id=22, pes=2, mips=1000, ram=4096, vm_ids=(2,)),
        ]
        if spare:
            hosts.append(Host(host_id=23, pes=4, mips=1000, ram=8192, active=False))
        migration_map = {1: 20, 2: 21, 3: 22}
        return vms, hosts, migration_map

    return build
