"""
Image Generator Tool - Creates images with the OpenAI Images API.
"""

import base64
import logging
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from ..models.conversation import TypedData
from .base import ChatTool, ToolOutput

logger = logging.getLogger(__name__)


class ImageGeneratorTool(ChatTool):
    """
    Generates images from a prompt. Results come back as PNG attachments on
    the tool message; the text result describes what was produced.
    """

    name = "image_generator"
    display_name = "Image Generator"
    description = "Generate images from a text description."
    parameters = {
        "type": "object",
        "properties": {
            "prompt": {"type": "string", "description": "Description of the image to create"},
            "n": {"type": "integer", "description": "Number of images", "minimum": 1, "maximum": 4},
            "size": {
                "type": "string",
                "enum": ["1024x1024", "1024x1792", "1792x1024"],
            },
        },
        "required": ["prompt"],
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "dall-e-3",
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Args:
            api_key: OpenAI API key
            model: Image model code
            base_url: Optional OpenAI-compatible endpoint
            client: Preconfigured client (overrides api_key/base_url)
        """
        self.model = model
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        else:
            self.client = None

    async def process(self, arguments: Dict[str, Any]) -> ToolOutput:
        if self.client is None:
            raise RuntimeError(
                "Image API key not configured. Please set IMAGE_API_KEY in environment variables."
            )

        prompt = str(arguments.get("prompt", "")).strip()
        if not prompt:
            raise ValueError("Missing required argument: prompt")

        n = int(arguments.get("n", 1))
        size = arguments.get("size", "1024x1024")

        logger.info(
            "Generating images",
            extra={"extra_fields": {"model": self.model, "n": n, "size": size}},
        )
        result = await self.client.images.generate(
            model=self.model,
            prompt=prompt,
            n=n,
            size=size,
            response_format="b64_json",
        )

        images = [
            TypedData.image(base64.b64decode(item.b64_json), file_name=f"image_{i + 1}.png")
            for i, item in enumerate(result.data)
            if item.b64_json
        ]
        return ToolOutput(
            string=f"Generated {len(images)} image(s) for prompt: {prompt}",
            data=images,
        )
