"""DigitalOcean Browser OAuth 로그인 스크립트."""

import asyncio
import logging

from oauth_capture import DigitalOceanProvider, OAuthCaptureError

logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(name)s | %(message)s")


async def main():
    """메인 함수."""
    print("DigitalOcean Browser OAuth 시작")
    print("=" * 60)

    provider = DigitalOceanProvider()

    try:
        token = await provider.login()
    except OAuthCaptureError as e:
        print(f"\n[ERROR] 인증 실패: {e}")
        return
    finally:
        provider.cancel()

    print("\n[OK] 로그인 성공!")
    print(f"[OK] Access Token: {token.access_token[:8]}...")
    print(f"[OK] Expires At: {token.expires_at}")
    if token.account_info:
        print(f"[OK] Account: {token.account_info.get('email')}")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[INFO] 취소되었습니다.")
