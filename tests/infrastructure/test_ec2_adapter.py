"""Tests for the boto3-backed EC2 control plane adapter."""

import base64
import threading

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, WaiterError
from botocore.stub import ANY, Stubber
from unittest.mock import MagicMock, patch

from nimbus.domain.errors import ControlPlaneError, ResourceNotFoundError
from nimbus.domain.ports.control_plane_port import ControlPlanePort
from nimbus.domain.value_objects.image import DeviceMapping
from nimbus.infrastructure.adapters.ec2_adapter import (
    EC2ControlPlane,
    image_from_description,
    translate_error,
)

IMAGE_DESCRIPTION = {
    "ImageId": "ami-1",
    "RootDeviceName": "/dev/sda1",
    "BlockDeviceMappings": [
        {"DeviceName": "/dev/sda1", "Ebs": {"VolumeSize": 8}},
        {"DeviceName": "/dev/sdb", "Ebs": {"VolumeSize": 100}},
        {"DeviceName": "/dev/sdc", "VirtualName": "ephemeral0"},
    ],
    "Tags": [
        {"Key": "nimbus:mount:/dev/sdb", "Value": "/data"},
        {"Key": "Name", "Value": "base"},
    ],
}


def _client():
    return boto3.client(
        "ec2",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _client_error(code, status, operation="RunInstances"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _adapter(client):
    return EC2ControlPlane(client=client, waiter_delay=1, waiter_max_attempts=1)


class TestImageFromDescription:
    def test_root_and_tagged_devices(self):
        image = image_from_description(IMAGE_DESCRIPTION)
        assert image.id == "ami-1"
        assert image.device_mappings == (
            DeviceMapping("/", "/dev/sda1", 8),
            DeviceMapping("/data", "/dev/sdb", 100),
        )

    def test_untagged_image_has_only_root(self):
        image = image_from_description(
            {
                "ImageId": "ami-2",
                "RootDeviceName": "/dev/xvda",
                "BlockDeviceMappings": [{"DeviceName": "/dev/xvda", "Ebs": {}}],
            }
        )
        assert image.required_mount_points() == []


class TestTranslateError:
    def test_throttle_code(self):
        error = translate_error("run_instances", _client_error("RequestLimitExceeded", 503))
        assert error.throttle is True
        assert error.status_code == 503
        assert error.code == "RequestLimitExceeded"

    def test_retryable_code(self):
        error = translate_error("run_instances", _client_error("InternalError", 500))
        assert error.retryable is True
        assert error.throttle is False

    def test_permanent_code(self):
        error = translate_error(
            "run_instances", _client_error("UnauthorizedOperation", 403)
        )
        assert error.retryable is False
        assert error.throttle is False
        assert "UnauthorizedOperation happened" in str(error)

    def test_not_found(self):
        error = translate_error(
            "describe_images", _client_error("InvalidAMIID.NotFound", 400)
        )
        assert isinstance(error, ResourceNotFoundError)
        assert error.code == "InvalidAMIID.NotFound"

    def test_connection_error_retryable(self):
        error = translate_error(
            "run_instances", EndpointConnectionError(endpoint_url="https://ec2")
        )
        assert error.retryable is True
        assert error.status_code is None

    def test_waiter_error(self):
        error = translate_error(
            "instance_stopped",
            WaiterError(name="InstanceStopped", reason="Max attempts exceeded", last_response={}),
        )
        assert error.code == "WaiterError"
        assert error.retryable is False


class TestEC2ControlPlane:
    def test_satisfies_protocol(self):
        assert isinstance(_adapter(MagicMock()), ControlPlanePort)

    @pytest.mark.asyncio
    async def test_lookup_image_cached(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "describe_images", {"Images": [IMAGE_DESCRIPTION]}, {"ImageIds": ["ami-1"]}
            )
            adapter = _adapter(client)
            first = await adapter.lookup_image("ami-1")
            second = await adapter.lookup_image("ami-1")
            stubber.assert_no_pending_responses()

        assert first is second
        assert first.required_mount_points() == ["/data"]

    @pytest.mark.asyncio
    async def test_lookup_missing_image(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response("describe_images", {"Images": []}, {"ImageIds": ["ami-x"]})
            with pytest.raises(ResourceNotFoundError):
                await _adapter(client).lookup_image("ami-x")

    @pytest.mark.asyncio
    async def test_create_instance(self):
        client = _client()
        user_data = base64.b64encode(b'{"A":"1"}').decode()
        with Stubber(client) as stubber:
            stubber.add_response(
                "run_instances",
                {"Instances": [{"InstanceId": "i-1"}]},
                {
                    "ImageId": "ami-1",
                    "MinCount": 1,
                    "MaxCount": 1,
                    "UserData": ANY,
                    "ClientToken": "tok-1",
                },
            )
            ids = await _adapter(client).create_instance(
                "ami-1", 1, user_data, client_token="tok-1"
            )
            stubber.assert_no_pending_responses()

        assert ids == ["i-1"]

    @pytest.mark.asyncio
    async def test_create_instance_passes_decoded_user_data_to_boto3(self):
        client = MagicMock()
        client.run_instances.return_value = {"Instances": [{"InstanceId": "i-1"}]}
        user_data = base64.b64encode(b'{"A":"1"}').decode()

        await _adapter(client).create_instance("ami-1", 1, user_data, client_token="tok-1")

        client.run_instances.assert_called_once_with(
            ImageId="ami-1",
            MinCount=1,
            MaxCount=1,
            UserData='{"A":"1"}',
            ClientToken="tok-1",
        )

    @pytest.mark.asyncio
    async def test_create_instance_without_token_omits_it(self):
        client = MagicMock()
        client.run_instances.return_value = {"Instances": [{"InstanceId": "i-1"}]}

        await _adapter(client).create_instance("ami-1", 1)

        assert "ClientToken" not in client.run_instances.call_args.kwargs

    @pytest.mark.asyncio
    async def test_create_instance_throttled(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_client_error(
                "run_instances",
                service_error_code="RequestLimitExceeded",
                service_message="Request limit exceeded.",
                http_status_code=503,
            )
            with pytest.raises(ControlPlaneError) as exc_info:
                await _adapter(client).create_instance("ami-1", 1, "")

        assert exc_info.value.throttle is True
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_stop_waits_for_stopped(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "stop_instances",
                {"StoppingInstances": [{"InstanceId": "i-1"}]},
                {"InstanceIds": ["i-1"]},
            )
            stubber.add_response(
                "describe_instances",
                {
                    "Reservations": [
                        {
                            "Instances": [
                                {"InstanceId": "i-1", "State": {"Code": 80, "Name": "stopped"}}
                            ]
                        }
                    ]
                },
                {"InstanceIds": ["i-1"]},
            )
            await _adapter(client).stop_instance("i-1")
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_start_waits_for_running(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "start_instances",
                {"StartingInstances": [{"InstanceId": "i-1"}]},
                {"InstanceIds": ["i-1"]},
            )
            stubber.add_response(
                "describe_instances",
                {
                    "Reservations": [
                        {
                            "Instances": [
                                {"InstanceId": "i-1", "State": {"Code": 16, "Name": "running"}}
                            ]
                        }
                    ]
                },
                {"InstanceIds": ["i-1"]},
            )
            await _adapter(client).start_instance("i-1")
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_attach_volume_resolves_device(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "describe_instances",
                {"Reservations": [{"Instances": [{"InstanceId": "i-1", "ImageId": "ami-1"}]}]},
                {"InstanceIds": ["i-1"]},
            )
            stubber.add_response(
                "describe_images", {"Images": [IMAGE_DESCRIPTION]}, {"ImageIds": ["ami-1"]}
            )
            stubber.add_response(
                "attach_volume",
                {"VolumeId": "vol-1", "InstanceId": "i-1", "Device": "/dev/sdb"},
                {"VolumeId": "vol-1", "InstanceId": "i-1", "Device": "/dev/sdb"},
            )
            await _adapter(client).attach_volume("vol-1", "i-1", "/data")
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_attach_volume_unknown_mount_point(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "describe_instances",
                {"Reservations": [{"Instances": [{"InstanceId": "i-1", "ImageId": "ami-1"}]}]},
                {"InstanceIds": ["i-1"]},
            )
            stubber.add_response(
                "describe_images", {"Images": [IMAGE_DESCRIPTION]}, {"ImageIds": ["ami-1"]}
            )
            with pytest.raises(ControlPlaneError, match="no device for mount point /scratch"):
                await _adapter(client).attach_volume("vol-1", "i-1", "/scratch")

    @pytest.mark.asyncio
    async def test_create_tags(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "create_tags",
                {},
                {
                    "Resources": ["i-1"],
                    "Tags": [
                        {"Key": "nimbus-instance-id", "Value": "i-1"},
                        {"Key": "Name", "Value": "web"},
                    ],
                },
            )
            await _adapter(client).create_tags(
                "i-1", {"nimbus-instance-id": "i-1", "Name": "web"}
            )
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_terminate(self):
        client = _client()
        with Stubber(client) as stubber:
            stubber.add_response(
                "terminate_instances",
                {"TerminatingInstances": [{"InstanceId": "i-1"}]},
                {"InstanceIds": ["i-1"]},
            )
            await _adapter(client).terminate_instance("i-1")
            stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_connection_error_translated(self):
        client = MagicMock()
        client.terminate_instances.side_effect = EndpointConnectionError(
            endpoint_url="https://ec2.us-east-1.amazonaws.com"
        )

        with pytest.raises(ControlPlaneError) as exc_info:
            await _adapter(client).terminate_instance("i-1")

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, EndpointConnectionError)


class TestClientConstruction:
    def test_no_client_built_on_init(self):
        with patch("nimbus.infrastructure.adapters.ec2_adapter.boto3.Session") as session:
            EC2ControlPlane(region="eu-west-1", profile="ops")

        session.assert_not_called()

    @pytest.mark.asyncio
    async def test_client_built_in_worker_thread_once(self):
        loop_thread = threading.get_ident()
        built_in: list[int] = []
        client = MagicMock()
        client.terminate_instances.return_value = {}

        def build_session(**kwargs):
            built_in.append(threading.get_ident())
            session = MagicMock()
            session.client.return_value = client
            return session

        with patch(
            "nimbus.infrastructure.adapters.ec2_adapter.boto3.Session",
            side_effect=build_session,
        ) as session:
            adapter = EC2ControlPlane(
                region="eu-west-1", profile="ops", endpoint_url="http://localhost:4566"
            )
            await adapter.terminate_instance("i-1")
            await adapter.terminate_instance("i-2")

        session.assert_called_once_with(profile_name="ops", region_name="eu-west-1")
        assert len(built_in) == 1
        assert built_in[0] != loop_thread
        assert client.terminate_instances.call_count == 2
