"""
Install manifest URLs.

The installer is triggered through an itms-services URL pointing at a
manifest generated by a remote service from the query parameters.
"""
import html

INSTALL_SCHEME = 'itms-services://?action=download-manifest&url='


def percent_encode_all(value: str) -> str:
    """Percent-encode every byte that is not an ASCII letter or digit."""
    out = []
    for byte in value.encode('utf-8'):
        char = chr(byte)
        if char.isascii() and char.isalnum():
            out.append(char)
        else:
            out.append(f'%{byte:02X}')
    return ''.join(out)


def build_fetch_url(host: str, port: int, path: str = '/signed.ipa') -> str:
    return f"http://{host}:{port}{path}"


def build_manifest_url(service: str, bundle_id: str, version: str, fetch_url: str) -> str:
    """
    Manifest service URL for an artifact.

    Example:
        >>> build_manifest_url('https://api.palera.in/genPlist', 'com.example.app', '1.0',
        ...                    'http://127.0.0.1:9090/signed.ipa')
        'https://api.palera.in/genPlist?bundleid=com.example.app&name=com.example.app&version=1.0&fetchurl=http://127.0.0.1:9090/signed.ipa'
    """
    return f"{service}?bundleid={bundle_id}&name={bundle_id}&version={version}&fetchurl={fetch_url}"


def build_install_url(manifest_url: str) -> str:
    """Wrap a manifest URL in the installer's URL scheme."""
    return INSTALL_SCHEME + percent_encode_all(manifest_url)


def render_install_page(install_url: str) -> str:
    """
    Minimal page that navigates to the install URL.

    Newer OS versions only honor itms-services links reached from a page
    navigation, so the URL is opened from here rather than directly.
    """
    escaped = html.escape(install_url, quote=True)
    script_url = install_url.replace('\\', '\\\\').replace('"', '\\"').replace('</', '<\\/')
    return (
        '<!DOCTYPE html>\n'
        '<html>\n'
        '<head>\n'
        '<meta charset="utf-8">\n'
        '<meta name="viewport" content="width=device-width, initial-scale=1">\n'
        '<title>Install</title>\n'
        '</head>\n'
        '<body>\n'
        f'<p><a href="{escaped}">Tap here if the install prompt does not appear.</a></p>\n'
        f'<script>window.location.href = "{script_url}";</script>\n'
        '</body>\n'
        '</html>\n'
    )
