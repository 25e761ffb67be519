from topology.models import ValidationErrorDetail


class BuildError(Exception):
    """Base class for errors that abort a topology build."""


class ClusterValidationError(BuildError):
    """Exception raised when a cluster specification is rejected."""

    def __init__(self, errors: list[ValidationErrorDetail]):
        self.errors = errors
        messages = [e.message for e in errors]
        super().__init__("; ".join(messages))

    @property
    def codes(self) -> list[str]:
        return [e.code for e in self.errors]


class UnresolvedInstanceRefError(BuildError):
    """A boot script references an instance ID that is not known for it."""

    def __init__(self, instance_name: str, reference: str):
        self.instance_name = instance_name
        self.reference = reference
        super().__init__(
            f"user data for instance {instance_name} references unknown instance {reference}"
        )


class DuplicateDeviceNameError(BuildError):
    """Two volumes on the same instance share a device name."""

    def __init__(self, instance_name: str, device_name: str, primary: bool):
        self.instance_name = instance_name
        self.device_name = device_name
        if primary:
            message = (
                "devicename can not be same for primary and secondary volumes "
                f"for instance {instance_name}"
            )
        else:
            message = (
                f"devicename {device_name} is used by more than one secondary volume "
                f"for instance {instance_name}"
            )
        super().__init__(message)
