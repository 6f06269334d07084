"""
Tests for parameter mapping.
"""

import pytest

from multicloud_ecs.ecs.errors import EcsValidationError
from multicloud_ecs.ecs.mapping import ParameterMapper


@pytest.fixture
def mapper():
    return ParameterMapper(
        image_mapping={"Ubuntu-22.04": "ami-ubuntu"},
        gpu_mapping={"a100": "p4d.24xlarge"},
        default_instance_type="t3.micro",
        size_mapping={"t3.large": (2, 8), "t3.small": (2, 2), "t3.xlarge": (4, 16)},
    )


class TestImageResolution:
    """Test image key lookup."""

    def test_mapped_key_is_case_insensitive(self, mapper):
        assert mapper.resolve_image_id(" ubuntu-22.04 ") == "ami-ubuntu"

    def test_unmapped_key_passes_through(self, mapper):
        """Test a raw vendor image id is used as-is."""
        assert mapper.resolve_image_id("ami-0abc") == "ami-0abc"

    def test_unmapped_key_uses_default_image(self):
        mapper = ParameterMapper(default_image_id="ami-default")
        assert mapper.resolve_image_id("centos-7.9") == "ami-default"

    def test_blank_key_rejected(self, mapper):
        with pytest.raises(EcsValidationError) as exc_info:
            mapper.resolve_image_id("")
        assert exc_info.value.error_code == "IMAGE_REQUIRED"


class TestInstanceTypeResolution:
    """Test instance type selection order."""

    def test_explicit_type_wins(self, mapper):
        assert mapper.resolve_instance_type("m5.large", gpu_model="A100", cpu=64) == "m5.large"

    def test_gpu_mapping(self, mapper):
        assert mapper.resolve_instance_type(gpu_model="A100") == "p4d.24xlarge"

    def test_unknown_gpu_falls_back_to_default(self, mapper):
        assert mapper.map_gpu_model("H100") == "t3.micro"
        assert mapper.map_gpu_model(None) is None

    def test_smallest_fit(self, mapper):
        """Test sizing picks the smallest type that satisfies both limits."""
        assert mapper.resolve_instance_type(cpu=2, memory=4) == "t3.large"
        assert mapper.resolve_instance_type(cpu=1) == "t3.small"
        assert mapper.resolve_instance_type(cpu=4, memory=8) == "t3.xlarge"

    def test_no_fit_uses_default(self, mapper):
        assert mapper.resolve_instance_type(cpu=128) == "t3.micro"

    def test_nothing_given(self, mapper):
        assert mapper.resolve_instance_type() == "t3.micro"
