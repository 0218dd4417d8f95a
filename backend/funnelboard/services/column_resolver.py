"""Header-to-field resolution for campaign spreadsheets.

WHAT:
    `find_column_index(headers, field)` locates the column holding a canonical
    campaign field in a sheet whose header row we do not control.

WHY:
    Exports come from different tools, in English or Portuguese, with or
    without underscores ("Amount spent", "Valor usado", "spend"). A static
    synonym table plus a two-phase match keeps this predictable:
        1. case-insensitive exact match against any synonym
        2. case-insensitive substring match (header contains synonym),
           scanning headers left to right, first hit wins
    Phase 1 lets a bare "Date"/"Data" header win outright; phase 2 still lets
    "Action Link Clicks (website)" resolve to `link_clicks`.

    -1 means "column absent"; callers default such cells to 0 / "".

REFERENCES:
    - funnelboard/services/row_mapper.py (resolves every field once per sheet)
"""

from typing import Dict, List, Sequence, Tuple


# Canonical field -> accepted header spellings (lowercase).
# Order matters only inside phase 2, where the first header containing ANY
# synonym wins; keep ambiguous short words ("clicks", "leads") out of tables
# where a longer header ("link clicks") could be misread.
COLUMN_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    # Dimensions
    "date": ("date", "data", "day", "dia", "reporting starts", "início dos relatórios"),
    "account_name": ("account name", "account_name", "account", "nome da conta", "conta"),
    "campaign_name": ("campaign name", "campaign_name", "campaign", "nome da campanha", "campanha"),
    "adset_name": ("adset name", "ad set name", "adset_name", "adset", "nome do conjunto de anúncios", "conjunto de anúncios"),
    "ad_name": ("ad name", "ad_name", "nome do anúncio", "anúncio"),
    # Delivery
    "spend": ("spend", "amount spent", "amount_spent", "valor usado", "valor gasto", "investimento", "gasto"),
    "impressions": ("impressions", "impressões", "impressoes"),
    "clicks": ("clicks", "clicks (all)", "cliques", "cliques (todos)"),
    "link_clicks": ("link clicks", "link_clicks", "linkclicks", "cliques no link", "cliques_no_link"),
    "landing_page_views": ("landing page views", "landing_page_views", "visualizações da página de destino", "lpv"),
    "reach": ("reach", "alcance"),
    "frequency": ("frequency", "frequência", "frequencia"),
    # Conversions
    "leads": ("leads", "lead", "cadastros"),
    "fb_pixel_leads": ("fb pixel leads", "fb_pixel_leads", "pixel leads", "leads no pixel"),
    "purchases": ("purchases", "purchase", "compras", "website purchases"),
    "purchase_value": ("purchase value", "purchase_value", "purchases conversion value", "valor de conversão da compra", "valor das compras"),
    "lead_value": ("lead value", "lead_value", "valor do lead"),
    "checkouts": ("checkouts", "checkouts initiated", "initiate checkout", "finalizações de compra iniciadas"),
    "results": ("results", "resultados"),
    "cost_per_result": ("cost per result", "cost_per_result", "custo por resultado"),
    "result_rate": ("result rate", "result_rate", "taxa de resultados"),
    # Engagement
    "page_likes": ("page likes", "page_likes", "curtidas na página"),
    "page_engagement": ("page engagement", "page_engagement", "engajamento com a página"),
    "post_engagement": ("post engagement", "post_engagement", "engajamento com a publicação"),
    "post_comments": ("post comments", "post_comments", "comentários na publicação"),
    "post_reactions": ("post reactions", "post_reactions", "reações à publicação"),
    "post_shares": ("post shares", "post_shares", "compartilhamentos da publicação"),
    "post_saves": ("post saves", "post_saves", "salvamentos da publicação"),
    "conversations_started": ("messaging conversations started", "conversations started", "conversations_started", "conversas por mensagem iniciadas"),
    # Video
    "video_views_3s": ("3-second video plays", "video views 3s", "video_views_3s", "reproduções de vídeo de 3 segundos"),
    "video_thruplay_watched": ("thruplays", "thruplay", "video_thruplay_watched"),
    "video_play_actions": ("video plays", "video play actions", "video_play_actions", "reproduções do vídeo"),
    "video_p25": ("video plays at 25%", "video_p25", "reproduções do vídeo até 25%"),
    "video_p50": ("video plays at 50%", "video_p50", "reproduções do vídeo até 50%"),
    "video_p75": ("video plays at 75%", "video_p75", "reproduções do vídeo até 75%"),
    "video_p100": ("video plays at 100%", "video_p100", "reproduções do vídeo até 100%"),
    # Ratios already computed by the source tool
    "cpc": ("cpc", "cpc (cost per link click)", "custo por clique"),
    "cpm": ("cpm", "cpm (cost per 1,000 impressions)", "custo por mil impressões"),
    "ctr": ("ctr", "ctr (link click-through rate)", "taxa de cliques"),
    "roas": ("roas", "purchase roas", "retorno sobre o investimento em anúncios"),
    "cpl": ("cpl", "cost per lead", "custo por lead"),
}


def to_camel(name: str) -> str:
    """snake_case -> camelCase (`video_views_3s` -> `videoViews3s`)."""
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


_CAMEL_TO_FIELD = {to_camel(field): field for field in COLUMN_SYNONYMS}


def canonical_field(field_name: str) -> str:
    """Accept both `link_clicks` and `linkClicks`."""
    return _CAMEL_TO_FIELD.get(field_name, field_name)


def find_column_index(headers: Sequence[str], field_name: str) -> int:
    """Return the index of the column holding `field_name`, or -1.

    Args:
        headers: Raw header row.
        field_name: Canonical field, snake_case or camelCase.
    """
    synonyms = COLUMN_SYNONYMS.get(canonical_field(field_name))
    if not synonyms:
        return -1

    normalized = [header.strip().lower() for header in headers]

    for index, header in enumerate(normalized):
        if header in synonyms:
            return index

    for index, header in enumerate(normalized):
        if any(synonym in header for synonym in synonyms):
            return index

    return -1


def resolve_columns(headers: Sequence[str], fields: Sequence[str]) -> Dict[str, int]:
    """Resolve every field once; used per sheet, not per row."""
    return {field: find_column_index(headers, field) for field in fields}


def found_columns(indexes: Dict[str, int]) -> List[str]:
    """camelCase names of the fields that resolved to a column."""
    return [to_camel(field) for field, index in indexes.items() if index >= 0]
