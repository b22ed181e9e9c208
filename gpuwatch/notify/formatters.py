"""Price alert email rendering."""

from dataclasses import dataclass
from decimal import Decimal
from html import escape
from typing import Optional
from urllib.parse import quote

RETAILER_LABELS = {
    "bestbuy": "Best Buy",
    "amazon": "Amazon",
    "newegg": "Newegg",
    "bh_photo": "B&H Photo",
    "microcenter": "Micro Center",
}


def retailer_label(retailer: str) -> str:
    return RETAILER_LABELS.get(retailer, retailer)


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def format_price_alert(
    to_email: str,
    gpu_model: str,
    gpu_slug: str,
    new_price: Decimal,
    retailer: str,
    affiliate_url: str,
    app_url: str,
    target_price: Optional[Decimal] = None,
    deal_reason: Optional[str] = None,
) -> RenderedEmail:
    """
    Render subject, HTML and plain-text bodies for one recipient.

    Args:
        affiliate_url: Site-relative redirect path (/out/{slug}/{retailer})
        app_url: Public site base URL
    """
    label = retailer_label(retailer)
    price = f"${new_price:.2f}"
    gpu_url = f"{app_url}/gpu/{gpu_slug}"
    out_url = f"{app_url}{affiliate_url}"
    unsubscribe_url = f"{app_url}/api/unwatch?email={quote(to_email)}&gpu={gpu_slug}"

    subject = f"🔥 {gpu_model} price alert: {price} at {label}"

    target_html = ""
    if target_price:
        target_html = (
            '<div style="font-size:13px;color:#666;margin-top:4px;">'
            f"Your target: ${target_price:.2f}</div>"
        )
    reason_html = ""
    if deal_reason:
        reason_html = (
            '<div style="margin-top:12px;background:#14532d;color:#4ade80;padding:6px 10px;'
            f'border-radius:4px;font-size:12px;font-weight:600;">✓ {escape(deal_reason)}</div>'
        )

    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <title>{escape(subject)}</title>
</head>
<body style="background:#0d0d0d;color:#e5e5e5;font-family:Inter,system-ui,sans-serif;margin:0;padding:32px 16px;">
  <div style="max-width:520px;margin:0 auto;">
    <div style="background:#111;border:1px solid #222;border-radius:12px;padding:32px;">
      <div style="font-size:22px;font-weight:700;color:#fff;margin-bottom:24px;">⚡ GPUWatch</div>
      <h1 style="margin:0 0 8px;font-size:20px;font-weight:700;color:#fff;">Price Alert Triggered</h1>
      <p style="margin:0 0 24px;color:#888;font-size:14px;">{escape(gpu_model)} is now available at your target price.</p>
      <div style="background:#1a1a1a;border:1px solid #2a2a2a;border-radius:8px;padding:20px;margin-bottom:24px;">
        <div style="font-size:13px;color:#888;margin-bottom:4px;">CURRENT PRICE</div>
        <div style="font-size:36px;font-weight:800;color:#4ade80;">{price}</div>
        {target_html}
        {reason_html}
      </div>
      <div style="margin-bottom:24px;">
        <div style="font-size:12px;color:#666;margin-bottom:4px;text-transform:uppercase;letter-spacing:.5px;">Retailer</div>
        <div style="font-size:15px;color:#ccc;font-weight:600;">{escape(label)}</div>
      </div>
      <a href="{escape(out_url)}" style="display:block;background:#2563eb;color:#fff;text-decoration:none;text-align:center;padding:14px;border-radius:8px;font-size:15px;font-weight:700;margin-bottom:16px;">Buy Now at {escape(label)} →</a>
      <a href="{escape(gpu_url)}" style="display:block;color:#888;text-decoration:none;text-align:center;padding:10px;border-radius:8px;font-size:13px;border:1px solid #222;">View full price history</a>
    </div>
    <p style="text-align:center;color:#555;font-size:11px;margin-top:20px;">
      GPUWatch · <a href="{app_url}/privacy" style="color:#666;">Privacy</a> ·
      <a href="{escape(unsubscribe_url)}" style="color:#666;">Unsubscribe</a><br/>
      Prices subject to change. We don't sell products. Affiliate disclosure: we may earn a commission.
    </p>
  </div>
</body>
</html>"""

    text = (
        f"{gpu_model} is now {price} at {label}.\n\n"
        f"Buy now: {out_url}\n"
        f"View price history: {gpu_url}\n\n"
        "--\nGPUWatch. Prices subject to change. Affiliate disclosure applies."
    )
    return RenderedEmail(subject=subject, html=html, text=text)
