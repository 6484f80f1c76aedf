"""Local distribution server and install manifest URLs."""
from .manifest import (
    build_fetch_url,
    build_install_url,
    build_manifest_url,
    percent_encode_all,
    render_install_page,
)
from .distribution import DistributionServer

__all__ = [
    'DistributionServer',
    'build_fetch_url',
    'build_install_url',
    'build_manifest_url',
    'percent_encode_all',
    'render_install_page',
]
