"""VAT category rules and tax bucket grouping.

The category table is a closed lookup used by every generator to emit the legally
mandated exemption clause. Bucketing by (rate, category) is what produces one tax
subtotal per distinct rate; the grand total is the sum of buckets.

Exemption codes from the CEF VATEX code list:
https://ec.europa.eu/digital-building-blocks/sites/display/DIGITAL/Registry+of+supporting+artefacts+to+implement+EN16931
"""

from dataclasses import dataclass, field
from decimal import Decimal

from services.invoice.model import AllowanceCharge, CanonicalInvoice, LineItem, TaxCategory, Totals
from services.invoice.monetary import compute_tax, round_money, sum_money, to_decimal
from services.shared.errors import SchemaError


@dataclass(frozen=True)
class TaxCategoryRule:
    """Fixed semantics of one VAT category.

    Attributes:
        code: UNTDID 5305 code
        exemption_reason: Legal text printed on the invoice (None for S)
        exemption_reason_code: VATEX code where one exists
        requires_zero_rate: Rate must be exactly 0
        foreign_vat_id_expected: Buyer VAT id expected (cross-border)
    """

    code: str
    exemption_reason: str | None
    exemption_reason_code: str | None
    requires_zero_rate: bool
    foreign_vat_id_expected: bool = False


TAX_CATEGORY_RULES: dict[str, TaxCategoryRule] = {
    TaxCategory.STANDARD.value: TaxCategoryRule("S", None, None, requires_zero_rate=False),
    TaxCategory.ZERO_RATED.value: TaxCategoryRule(
        "Z", "Zero rated goods", None, requires_zero_rate=True
    ),
    TaxCategory.EXEMPT.value: TaxCategoryRule(
        "E", "Exempt from VAT", "VATEX-EU-132", requires_zero_rate=True
    ),
    TaxCategory.REVERSE_CHARGE.value: TaxCategoryRule(
        "AE",
        "Reverse charge - Loss of tax liability of the buyer applies",
        "VATEX-EU-AE",
        requires_zero_rate=True,
        foreign_vat_id_expected=True,
    ),
    TaxCategory.INTRA_COMMUNITY.value: TaxCategoryRule(
        "K",
        "Intra-community supply",
        "VATEX-EU-IC",
        requires_zero_rate=True,
        foreign_vat_id_expected=True,
    ),
    TaxCategory.EXPORT.value: TaxCategoryRule(
        "G", "Export outside the EU", "VATEX-EU-G", requires_zero_rate=True
    ),
    TaxCategory.NOT_SUBJECT.value: TaxCategoryRule(
        "O", "Not subject to VAT", "VATEX-EU-O", requires_zero_rate=True
    ),
    TaxCategory.CANARY_ISLANDS.value: TaxCategoryRule(
        "L", "Canary Islands general indirect tax", None, requires_zero_rate=True
    ),
}


def get_category_rule(code: str) -> TaxCategoryRule:
    """Look up a category rule.

    Args:
        code: Category code (case-insensitive)

    Returns:
        The matching TaxCategoryRule

    Raises:
        SchemaError: If the code is not a known category
    """
    rule = TAX_CATEGORY_RULES.get(code.upper())
    if rule is None:
        available = ", ".join(TAX_CATEGORY_RULES)
        raise SchemaError(
            f"Unknown tax category: '{code}'. Available categories: {available}", "tax_category_code"
        )
    return rule


def exemption_reason(code: str) -> str | None:
    rule = TAX_CATEGORY_RULES.get(code.upper())
    return rule.exemption_reason if rule else None


def resolve_category(rate: Decimal, code: str | None) -> str:
    """Category for a rate when none was given: S above zero, otherwise E."""
    if code:
        return code.upper()
    return TaxCategory.STANDARD.value if rate > 0 else TaxCategory.EXEMPT.value


def effective_rate(item: LineItem | AllowanceCharge, invoice: CanonicalInvoice) -> Decimal:
    """Rate for a line or allowance, falling back to the invoice-level rate, then 0.

    Zero-rate categories always resolve to 0 regardless of the stated rate.
    """
    code = item.tax_category_code.upper() if item.tax_category_code else None
    if code in TAX_CATEGORY_RULES and TAX_CATEGORY_RULES[code].requires_zero_rate:
        return Decimal(0)
    if item.tax_rate is not None:
        return to_decimal(item.tax_rate)
    if invoice.tax_rate is not None:
        return to_decimal(invoice.tax_rate)
    return Decimal(0)


def line_net_amount(item: LineItem) -> Decimal:
    """Line net amount; derived from quantity x price when the total is missing."""
    if item.total_price is not None:
        return round_money(item.total_price)
    return round_money(to_decimal(item.quantity) * to_decimal(item.unit_price))


@dataclass
class TaxBucket:
    """Tax subtotal for one (rate, category) pair."""

    rate: Decimal
    category: str
    basis_amount: Decimal = Decimal(0)
    line_count: int = 0
    line_indexes: list[int] = field(default_factory=list)

    @property
    def tax_amount(self) -> Decimal:
        return compute_tax(self.basis_amount, self.rate)

    @property
    def exemption_reason(self) -> str | None:
        return exemption_reason(self.category)

    @property
    def exemption_reason_code(self) -> str | None:
        rule = TAX_CATEGORY_RULES.get(self.category)
        return rule.exemption_reason_code if rule else None


def group_tax_buckets(invoice: CanonicalInvoice) -> list[TaxBucket]:
    """Group lines and document allowances/charges by (rate, category).

    Allowances reduce and charges increase the basis of their bucket. Buckets are
    ordered by rate descending, then category code, so output is deterministic.

    Args:
        invoice: Canonical invoice

    Returns:
        Ordered list of tax buckets
    """
    buckets: dict[tuple[Decimal, str], TaxBucket] = {}

    def bucket_for(rate: Decimal, code: str | None) -> TaxBucket:
        category = resolve_category(rate, code)
        key = (rate.normalize(), category)
        if key not in buckets:
            buckets[key] = TaxBucket(rate=rate, category=category)
        return buckets[key]

    for index, item in enumerate(invoice.line_items):
        rate = effective_rate(item, invoice)
        bucket = bucket_for(rate, item.tax_category_code)
        bucket.basis_amount = round_money(bucket.basis_amount + line_net_amount(item))
        bucket.line_count += 1
        bucket.line_indexes.append(index)

    for ac in invoice.allowance_charges:
        rate = effective_rate(ac, invoice)
        bucket = bucket_for(rate, ac.tax_category_code)
        amount = round_money(ac.amount)
        bucket.basis_amount = round_money(
            bucket.basis_amount + (amount if ac.charge_indicator else -amount)
        )

    return sorted(buckets.values(), key=lambda b: (-b.rate, b.category))


def allowance_total(invoice: CanonicalInvoice) -> Decimal:
    return sum_money(ac.amount for ac in invoice.allowance_charges if not ac.charge_indicator)


def charge_total(invoice: CanonicalInvoice) -> Decimal:
    return sum_money(ac.amount for ac in invoice.allowance_charges if ac.charge_indicator)


def compute_totals(invoice: CanonicalInvoice) -> Totals:
    """Recompute document totals from lines, allowances/charges and tax buckets.

    Returns:
        Totals with subtotal (sum of line nets), bucket tax sum and grand total
    """
    subtotal = sum_money(line_net_amount(i) for i in invoice.line_items)
    buckets = group_tax_buckets(invoice)
    tax_amount = sum_money(b.tax_amount for b in buckets)
    tax_basis = subtotal - allowance_total(invoice) + charge_total(invoice)
    return Totals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=round_money(tax_basis + tax_amount),
    )


@dataclass
class DocumentAmounts:
    """Amounts a generator writes into the document summation block.

    Declared totals win over recomputed ones so that output reproduces the invoice
    exactly; validation has already checked they agree within tolerance.
    """

    line_total: Decimal
    allowance_total: Decimal
    charge_total: Decimal
    tax_basis_total: Decimal
    tax_total: Decimal
    grand_total: Decimal
    prepaid: Decimal
    due_payable: Decimal
    buckets: list[TaxBucket]


def document_amounts(invoice: CanonicalInvoice) -> DocumentAmounts:
    computed = compute_totals(invoice)
    buckets = group_tax_buckets(invoice)
    totals = invoice.totals

    line_total = (
        round_money(totals.subtotal) if totals.subtotal is not None else computed.subtotal
    )
    allowances = allowance_total(invoice)
    charges = charge_total(invoice)
    tax_total = (
        round_money(totals.tax_amount) if totals.tax_amount is not None else computed.tax_amount
    )
    tax_basis = round_money(line_total - allowances + charges)
    grand_total = (
        round_money(totals.total_amount)
        if totals.total_amount is not None
        else round_money(tax_basis + tax_total)
    )
    prepaid = round_money(invoice.payment.prepaid_amount)
    return DocumentAmounts(
        line_total=line_total,
        allowance_total=allowances,
        charge_total=charges,
        tax_basis_total=tax_basis,
        tax_total=tax_total,
        grand_total=grand_total,
        prepaid=prepaid,
        due_payable=round_money(grand_total - prepaid),
        buckets=buckets,
    )
