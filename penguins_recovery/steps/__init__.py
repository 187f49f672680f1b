from .step_10_extract_iso import ExtractIsoStep
from .step_20_detect_family import DetectFamilyStep
from .step_30_install_packages import InstallPackagesStep
from .step_40_inject_recovery import InjectRecoveryStep
from .step_50_install_gui import InstallGuiStep
from .step_60_secureboot_chain import SecureBootChainStep
from .step_70_repack_iso import RepackIsoStep

__all__ = [
    "ExtractIsoStep",
    "DetectFamilyStep",
    "InstallPackagesStep",
    "InjectRecoveryStep",
    "InstallGuiStep",
    "SecureBootChainStep",
    "RepackIsoStep",
]
