import base64
from unittest.mock import MagicMock

import pytest
from PIL import Image

from vision_worker.errors import VisionModelError
from vision_worker.pipeline.vision import VisionModel


@pytest.fixture
def frame(tmp_path):
    path = tmp_path / "frame_0001.jpg"
    Image.new("RGB", (16, 16), "blue").save(path, "JPEG")
    return path


def make_client(content):
    client = MagicMock()
    if content is None:
        client.chat.completions.create.return_value.choices = []
    else:
        client.chat.completions.create.return_value.choices = [MagicMock(message=MagicMock(content=content))]
    return client


def test_describe_sends_image_and_prompt(frame):
    client = make_client("  A blue square.  ")
    model = VisionModel(client, model="gpt-4o", system_prompt="You describe images.")

    assert model.describe(str(frame), "What is this?") == "A blue square."

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    system, user = kwargs["messages"]
    assert system == {"role": "system", "content": "You describe images."}
    text, image = user["content"]
    assert text == {"type": "text", "text": "What is this?"}
    encoded = base64.b64encode(frame.read_bytes()).decode("utf-8")
    assert image["image_url"]["url"] == f"data:image/jpeg;base64,{encoded}"


def test_without_system_prompt_only_user_message_is_sent(frame):
    client = make_client("ok")

    VisionModel(client)(str(frame), "describe")

    messages = client.chat.completions.create.call_args.kwargs["messages"]
    assert [m["role"] for m in messages] == ["user"]


@pytest.mark.parametrize("content", [None, "", "   "])
def test_empty_responses_are_errors(frame, content):
    with pytest.raises(VisionModelError):
        VisionModel(make_client(content)).describe(str(frame), "describe")


def test_unreadable_frame_is_not_sent(tmp_path):
    bad = tmp_path / "frame_0001.jpg"
    bad.write_bytes(b"")
    client = make_client("ok")

    with pytest.raises(VisionModelError, match="unreadable"):
        VisionModel(client).describe(str(bad), "describe")

    client.chat.completions.create.assert_not_called()


def test_client_errors_propagate(frame):
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("503 Service Unavailable")

    with pytest.raises(RuntimeError):
        VisionModel(client).describe(str(frame), "describe")
