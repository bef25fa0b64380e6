"""Tests for the provisioning error taxonomy."""

from nimbus.domain.errors import (
    CompensationReport,
    CompensationWarning,
    ControlPlaneError,
    DeadlineExceededError,
    EncodingError,
    LaunchCountMismatchError,
    LaunchError,
    ProvisioningStep,
    ResourceLookupError,
    ResourceNotFoundError,
    TaggingError,
    ValidationError,
    VolumeAttachError,
)


class TestStepNames:
    def test_each_error_names_its_step(self):
        assert ResourceLookupError("x").step == ProvisioningStep.RESOLVE_IMAGE
        assert ValidationError("x").step == ProvisioningStep.VALIDATE_MOUNTS
        assert EncodingError("x").step == ProvisioningStep.ENCODE_ENV
        assert LaunchError("x").step == ProvisioningStep.LAUNCH
        assert LaunchCountMismatchError([]).step == ProvisioningStep.LAUNCH
        assert VolumeAttachError("x").step == ProvisioningStep.ATTACH_VOLUMES
        assert TaggingError("x").step == ProvisioningStep.TAG

    def test_str_includes_step(self):
        assert str(TaggingError("tagging i-1: denied")) == "tag: tagging i-1: denied"


class TestDeadlineExceeded:
    def test_is_a_timeout_tagged_with_its_step(self):
        error = DeadlineExceededError(
            "deadline of 30s exceeded",
            step=ProvisioningStep.TAG,
            instance_id="i-1",
        )
        assert isinstance(error, TimeoutError)
        assert error.step == ProvisioningStep.TAG
        assert error.remote_resource_created is True
        assert str(error) == "tag: deadline of 30s exceeded"

    def test_before_launch_nothing_created(self):
        error = DeadlineExceededError("late", step=ProvisioningStep.RESOLVE_IMAGE)
        assert error.remote_resource_created is False


class TestRemoteResourceCreated:
    def test_pre_launch_failure(self):
        assert ValidationError("missing /data").remote_resource_created is False

    def test_post_launch_failure(self):
        assert TaggingError("x", instance_id="i-1").remote_resource_created is True

    def test_compensation_implies_resource(self):
        error = LaunchCountMismatchError(["", ""])
        assert error.remote_resource_created is False
        error.compensation = CompensationReport(attempted=("i-9",))
        assert error.remote_resource_created is True


class TestLaunchCountMismatch:
    def test_counts(self):
        error = LaunchCountMismatchError(["i-1", "i-2"])
        assert error.instance_ids == ("i-1", "i-2")
        assert error.instance_id == "i-1"
        assert "reported 2" in str(error)
        assert isinstance(error, LaunchError)

    def test_skips_empty_ids(self):
        assert LaunchCountMismatchError(["", "i-2"]).instance_id == "i-2"


class TestCompensationReport:
    def test_succeeded(self):
        assert CompensationReport(attempted=("i-1",)).succeeded is True

    def test_failed(self):
        warning = CompensationWarning("i-1", RuntimeError("denied"))
        report = CompensationReport(attempted=("i-1",), failures=(warning,))
        assert report.succeeded is False
        assert "i-1" in str(warning)

    def test_nothing_attempted(self):
        assert CompensationReport().succeeded is False


class TestControlPlaneError:
    def test_not_found_defaults(self):
        error = ResourceNotFoundError("gone")
        assert isinstance(error, ControlPlaneError)
        assert error.status_code == 404
        assert error.retryable is False
