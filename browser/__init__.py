"""
Browser Automation Module - local Playwright Chromium

    from browser.stealth_manager import StealthBrowserManager
    from browser.captcha_manager import ChallengeManager
"""
