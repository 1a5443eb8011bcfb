"""访问网关与访问审计"""
