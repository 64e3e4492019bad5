"""
Browser Automation Module - Playwright engines with stealth profiles

Everything that touches a concrete browser lives here:
    stealth      - engine order, launch/context profiles, engine_session()
    driver       - PageDriver interface and its Playwright adapter
    human        - human-like mouse, scroll and typing
    captcha_gate - reCAPTCHA response polling and the operator pause
"""

from browser.captcha_gate import CaptchaGateResult, hold_for_resolution, wait_for_captcha
from browser.driver import PageDriver, PlaywrightPageDriver
from browser.stealth import ENGINE_A, ENGINE_B, ENGINE_C, ENGINE_ORDER, engine_session

__all__ = [
    "CaptchaGateResult",
    "ENGINE_A",
    "ENGINE_B",
    "ENGINE_C",
    "ENGINE_ORDER",
    "PageDriver",
    "PlaywrightPageDriver",
    "engine_session",
    "hold_for_resolution",
    "wait_for_captcha",
]
