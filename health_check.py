#!/usr/bin/env python3
"""
Health check for the SD backend the panel is configured against
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

# Add project root to path
sys.path.append(str(Path(__file__).parent))
from sd_panel.config import get_panel_config
from sd_panel.stable_diffusion import SDClient, autodetect_endpoint

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger('HealthCheck')


class HealthChecker:
    """Checks backend reachability and catalog availability"""

    def __init__(self, settings_path: Optional[str] = None):
        self.config = get_panel_config(settings_path)
        self.settings = self.config.load_settings()
        self.client = SDClient(self.settings.sd_endpoint, self.settings.timeout_options())

    async def check_backend(self) -> Dict[str, Any]:
        result = {
            'name': 'Stable Diffusion WebUI',
            'url': self.client.base_url,
            'status': 'unknown',
            'available': False,
            'response_time': None,
            'error': None,
            'details': {}
        }

        if not self.client.base_url:
            result['status'] = 'disabled'
            result['error'] = 'No endpoint configured'
            return result

        start_time = datetime.now()
        available = await self.client.ping()
        result['response_time'] = (datetime.now() - start_time).total_seconds()

        if not available:
            result['status'] = 'unavailable'
            result['error'] = 'Backend did not answer /sdapi/v1/sd-models'
            logger.warning(f"Backend at {self.client.base_url} is unavailable")
            return result

        result['available'] = True
        options = await self.client.fetch_options()
        counts = {category: len(values) for category, values in options.model_dump().items()}
        result['details']['catalog'] = counts
        result['status'] = 'healthy' if counts['models'] and counts['samplers'] else 'degraded'
        if result['status'] == 'degraded':
            logger.warning(f"Backend answered but returned no models or samplers: {counts}")
        else:
            logger.info(f"Backend healthy in {result['response_time']:.2f}s")
        return result


async def main(settings_path: Optional[str] = None, autodetect: bool = False) -> bool:
    """Main health check function"""
    print("🔍 SD Panel Health Check")
    print("=" * 50)

    checker = HealthChecker(settings_path)
    summary = checker.config.get_config_summary()
    print(f"⚙️  Settings: {summary['settings_path']} (exists: {summary['settings_exists']})")
    print(f"⏱️  Timeout: x{summary['timeout']['multiplier']}, "
          f"{summary['timeout']['min_seconds']}s - {summary['timeout']['max_seconds']}s")

    result = await checker.check_backend()
    status_icon = {
        'healthy': '✅',
        'degraded': '⚠️',
        'unavailable': '🔴',
        'disabled': '⚫',
    }.get(result['status'], '❓')

    print(f"\n{status_icon} {result['name']} at {result['url'] or '-'}: {result['status']}")
    if result['error']:
        print(f"    Error: {result['error']}")
    if result['response_time']:
        print(f"    Response time: {result['response_time']:.2f}s")
    for category, count in result['details'].get('catalog', {}).items():
        print(f"    {category}: {count}")

    if not result['available'] and autodetect:
        print("\n🔎 Probing local endpoints...")
        detected = await autodetect_endpoint()
        if detected:
            print(f"  💡 Backend found at {detected}; save it with sd_endpoint in settings.json")
        else:
            print("  ❌ No local backend answered")

    if result['status'] not in ['healthy', 'disabled']:
        print("\n💡 Suggestions:")
        print("  - Check the WebUI is running with --api")
        print("  - Verify sd_endpoint in settings.json or the SD_BASE_URL variable")
        print("  - Raise timeout_max_seconds for slow hardware")

    return result['status'] == 'healthy'


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Check the SD backend used by the panel")
    parser.add_argument("--settings", help="Path to settings.json")
    parser.add_argument("--autodetect", action="store_true", help="Probe common local endpoints when unreachable")
    args = parser.parse_args()
    success = asyncio.run(main(args.settings, args.autodetect))
    sys.exit(0 if success else 1)
