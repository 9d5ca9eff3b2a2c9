import base64
import logging
from typing import Optional
from openai import OpenAI

from .frames import validate_frame_file
from ..errors import VisionModelError

logger = logging.getLogger("vision_worker")


def create_openai_client(base_url: Optional[str] = None, timeout: float = 120.0) -> OpenAI:
    """
    Build an OpenAI client. base_url may point at any OpenAI-compatible
    server (e.g. a local Ollama at http://localhost:11434/v1).
    """
    kwargs = {"timeout": timeout}
    if base_url:
        kwargs["base_url"] = base_url
    return OpenAI(**kwargs)


class VisionModel:
    """Describes a single image with a chat-completions vision model"""

    def __init__(self, client: OpenAI, model: str = "gpt-4o", system_prompt: Optional[str] = None):
        self.client = client
        self.model = model
        self.system_prompt = system_prompt

    def describe(self, image_path: str, prompt: str) -> str:
        """
        Send one frame and a prompt to the model.

        Returns:
            The model's description text

        Raises:
            VisionModelError if the image is unusable or the model returns nothing
        """
        if not validate_frame_file(image_path):
            raise VisionModelError(f"image file '{image_path}' is missing, empty or unreadable")

        with open(image_path, 'rb') as image_file:
            base64_image = base64.b64encode(image_file.read()).decode('utf-8')

        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({
            "role": "user",
            "content": [
                {"type": "text", "text": prompt},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"}
                }
            ]
        })

        logger.debug(f"Sending {image_path} to {self.model} for analysis")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=0.1
        )

        if not response.choices:
            raise VisionModelError(f"no response messages received from model for '{image_path}'")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise VisionModelError(f"model returned empty response for image '{image_path}'")

        logger.debug(f"Raw response content for {image_path}: {content[:200]}")
        return content.strip()

    def __call__(self, image_path: str, prompt: str) -> str:
        return self.describe(image_path, prompt)
