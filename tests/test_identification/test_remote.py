"""Tests for the remote identification client."""

from unittest.mock import Mock

import httpx
import pytest

from birdcall_id.identification.exceptions import CorruptAudioError, TransportError
from birdcall_id.identification.models import AudioSource, ErrorKind
from birdcall_id.identification.remote import RemoteIdentificationClient

BASE_URL = "https://birds.example.org/api"

SPARROW_PAYLOAD = {
    "bird_data": {
        "id": "1",
        "bird_nm": "Eurasian Tree Sparrow",
        "scientific_nm": "Passer montanus",
        "family": "Passeridae",
        "habitat": "Urban",
    },
    "confidence": 0.92,
    "scientific_nm": "Passer montanus",
}


def make_client(handler, chunk_size: int = 64 * 1024) -> RemoteIdentificationClient:
    return RemoteIdentificationClient(
        BASE_URL, chunk_size=chunk_size, transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
class TestRemoteIdentificationClient:
    """Test cases for RemoteIdentificationClient."""

    @pytest.mark.asyncio
    async def test_uploads_multipart_and_parses_result(self) -> None:
        """Test the recording is posted as audio_file and the body parsed."""
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=SPARROW_PAYLOAD)

        client = make_client(handler)
        try:
            data = await client.identify(AudioSource.from_bytes(b"RIFF" * 10, "call.wav"))
        finally:
            await client.aclose()

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/prediction/"
        assert request.headers["Content-Type"].startswith("multipart/form-data")
        assert b'name="audio_file"' in request.content
        assert b'filename="call.wav"' in request.content
        assert data.bird_data.bird_nm == "Eurasian Tree Sparrow"
        assert data.confidence == pytest.approx(0.92)

    @pytest.mark.asyncio
    async def test_upload_progress_reaches_total(self) -> None:
        """Test upload progress is reported per chunk up to the full size."""
        progress = []

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=SPARROW_PAYLOAD)

        client = make_client(handler, chunk_size=256)
        try:
            await client.identify(
                AudioSource.from_bytes(b"\x00" * 2000, "call.wav"),
                on_upload_progress=lambda sent, total: progress.append((sent, total)),
            )
        finally:
            await client.aclose()

        assert len(progress) > 1
        sent_values = [sent for sent, _ in progress]
        assert sent_values == sorted(sent_values)
        assert progress[-1][0] == progress[-1][1]

    @pytest.mark.asyncio
    async def test_payload_error_is_returned(self) -> None:
        """Test a service-reported failure comes back as error data."""
        client = make_client(lambda request: httpx.Response(200, json={"error": "Failed to predict"}))
        try:
            data = await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

        assert data.error == "Failed to predict"
        assert data.error_kind is ErrorKind.INFERENCE

    @pytest.mark.asyncio
    async def test_error_status_is_transport_error(self) -> None:
        """Test HTTP error statuses raise TransportError."""
        client = make_client(
            lambda request: httpx.Response(500, json={"message": "model offline"})
        )
        try:
            with pytest.raises(TransportError, match="model offline") as exc_info:
                await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

        assert exc_info.value.kind is ErrorKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_invalid_json_is_transport_error(self) -> None:
        """Test an unparseable body raises TransportError."""
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        try:
            with pytest.raises(TransportError, match="invalid JSON"):
                await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_missing_confidence_is_transport_error(self) -> None:
        """Test a body without confidence raises TransportError."""
        client = make_client(lambda request: httpx.Response(200, json={"bird_data": None}))
        try:
            with pytest.raises(TransportError, match="Malformed"):
                await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_non_object_bird_data_is_transport_error(self) -> None:
        """Test a string bird_data raises TransportError."""
        client = make_client(
            lambda request: httpx.Response(200, json={"confidence": 0.9, "bird_data": "x"})
        )
        try:
            with pytest.raises(TransportError, match="bird_data"):
                await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_unreadable_file_is_corrupt_audio(self, tmp_path) -> None:
        """Test a file removed before upload is reported as corrupt audio."""
        handler = Mock(return_value=httpx.Response(200, json=SPARROW_PAYLOAD))
        client = make_client(handler)
        try:
            with pytest.raises(CorruptAudioError):
                await client.identify(AudioSource.from_path(tmp_path / "gone.wav"))
        finally:
            await client.aclose()

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_failure_is_transport_error(self) -> None:
        """Test connection failures raise TransportError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        try:
            with pytest.raises(TransportError, match="Upload failed"):
                await client.identify(AudioSource.from_bytes(b"RIFF", "call.wav"))
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_probe_unreachable(self) -> None:
        """Test probe raises TransportError when the service is unreachable."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        try:
            with pytest.raises(TransportError, match="unreachable"):
                await client.probe()
        finally:
            await client.aclose()
