"""
Vendor-neutral to vendor-specific parameter mapping.
"""

import logging
from typing import Optional

from .errors import EcsValidationError, ErrorCode


class ParameterMapper:
    """Resolves image keys and sizing hints into a vendor's identifiers."""

    def __init__(
        self,
        image_mapping: Optional[dict[str, str]] = None,
        gpu_mapping: Optional[dict[str, str]] = None,
        default_image_id: Optional[str] = None,
        default_instance_type: Optional[str] = None,
        size_mapping: Optional[dict[str, tuple[int, int]]] = None,
    ):
        """
        Args:
            image_mapping: Image key to vendor image id
            gpu_mapping: GPU model to vendor instance type
            default_image_id: Used for image keys with no mapping
            default_instance_type: Used when nothing else resolves a type
            size_mapping: Instance type to (vCPU, memory GB)
        """
        self.image_mapping = {k.lower(): v for k, v in (image_mapping or {}).items()}
        self.gpu_mapping = {k.upper(): v for k, v in (gpu_mapping or {}).items()}
        self.default_image_id = default_image_id
        self.default_instance_type = default_instance_type
        # Smallest first so the first fit is the cheapest fit
        self.size_mapping = sorted(
            (size_mapping or {}).items(), key=lambda item: (item[1][0], item[1][1])
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def resolve_image_id(self, image_key: Optional[str]) -> str:
        """
        Map an image key to a vendor image id.

        Unmapped keys fall back to the default image when one is configured,
        otherwise the key is passed through as a raw vendor image id.
        """
        if image_key is None or not image_key.strip():
            raise EcsValidationError(ErrorCode.IMAGE_REQUIRED, "image_key must not be blank")

        image_id = self.image_mapping.get(image_key.strip().lower())
        if image_id is not None:
            self.logger.debug(f"Image mapping: {image_key} -> {image_id}")
            return image_id

        fallback = self.default_image_id or image_key.strip()
        self.logger.warning(
            f"No image mapping for {image_key}, using {fallback}",
            extra={"image_key": image_key, "image_id": fallback},
        )
        return fallback

    def map_gpu_model(self, gpu_model: Optional[str]) -> Optional[str]:
        if gpu_model is None or not gpu_model.strip():
            return None
        instance_type = self.gpu_mapping.get(gpu_model.strip().upper())
        if instance_type is None:
            self.logger.warning(
                f"No instance type mapping for GPU model {gpu_model}",
                extra={"gpu_model": gpu_model},
            )
            return self.default_instance_type
        return instance_type

    def resolve_instance_type(
        self,
        instance_type: Optional[str] = None,
        gpu_model: Optional[str] = None,
        cpu: Optional[int] = None,
        memory: Optional[int] = None,
    ) -> Optional[str]:
        """Explicit type, then GPU mapping, then cpu/memory fit, then the default."""
        if instance_type and instance_type.strip():
            return instance_type.strip()

        mapped = self.map_gpu_model(gpu_model)
        if mapped:
            return mapped

        if cpu or memory:
            for candidate, (candidate_cpu, candidate_memory) in self.size_mapping:
                if candidate_cpu >= (cpu or 0) and candidate_memory >= (memory or 0):
                    return candidate
            self.logger.warning(
                f"No instance type fits cpu={cpu} memory={memory}GB",
                extra={"cpu": cpu, "memory": memory},
            )

        return self.default_instance_type
