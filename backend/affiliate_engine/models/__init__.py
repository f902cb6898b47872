from .affiliates import Affiliate, CommissionTier
from .referrals import ReferralLink
from .commissions import Commission
from .payouts import Payout
